#!/usr/bin/env python3
"""
Ask CLI: run one or more questions through the pipeline and print the answers.

Usage:
    python scripts/ask.py "Who works in Sales?"
    python scripts/ask.py "Who works in Sales?" "Who works in sales?"   # 2nd is a cache hit
    python scripts/ask.py --config my.yaml --timeout 30 "How many projects?"
    python scripts/ask.py --memory-cache --verbose "..."
"""

import argparse
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Path setup
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from graphqa.config_loader import configure_logging, load_config  # noqa: E402
from graphqa.logic.deadline import Deadline  # noqa: E402
from graphqa.services import Services  # noqa: E402

# ANSI
G = "\033[92m"; R = "\033[91m"; D = "\033[2m"; X = "\033[0m"


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Ask the graph a question")
    parser.add_argument("questions", nargs="+", help="Question(s) to answer, in order")
    parser.add_argument("--config", type=str, default=None, help="Path to a config YAML")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Per-question deadline in seconds (default: timeouts.request_s)")
    parser.add_argument("--memory-cache", action="store_true",
                        help="Use a process-local cache instead of the Neo4j vector index")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    if args.memory_cache:
        config.cache.backend = "memory"
    if args.verbose:
        config.logging.debug = True
    configure_logging(config.logging)

    timeout = args.timeout or config.timeouts.request_s
    failures = 0
    with Services.from_config(config) as services:
        for question in args.questions:
            ctx = services.pipeline.run(question, Deadline(timeout))
            tag = "cached" if ctx.cached else "fresh"
            print(f"{D}Q ({tag}): {question}{X}")
            if ctx.errored:
                failures += 1
                print(f"{R}{ctx.error_message}{X}\n")
            else:
                print(f"{G}{ctx.answer}{X}\n")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
