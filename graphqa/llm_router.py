"""Unified LLM Router: one call signature for Gemini, OpenAI and Anthropic.

Routes LLM calls by model name:
  - gpt-* / o1* / o3* / o4* → OpenAI Responses API
  - claude-*               → Anthropic Messages API
  - anything else          → Google GenAI SDK

Callers use `llm_call()` and get an LLMResult back. Provider errors never
raise; they come back in `error`, with `timed_out` set when the client gave
up because of the timeout.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Optional

from .logic.errors import is_timeout_error

logger = logging.getLogger(__name__)

API_KEY_ENV = {
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

_OPENAI_PREFIXES = ("gpt-", "o1", "o3", "o4")


@dataclass
class LLMResult:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    duration_s: float = 0.0
    error: Optional[str] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def provider_for(model: str) -> str:
    if model.startswith(_OPENAI_PREFIXES):
        return "openai"
    if model.startswith("claude-"):
        return "anthropic"
    return "gemini"


def get_api_key(provider: str) -> Optional[str]:
    env_var = API_KEY_ENV.get(provider)
    return os.getenv(env_var) if env_var else None


def _failure(provider: str, model: str, exc: Exception, t0: float) -> LLMResult:
    timed_out = is_timeout_error(exc)
    logger.error(f"{provider} API error ({model}){' [timeout]' if timed_out else ''}: {exc}")
    return LLMResult(
        text="",
        error=str(exc) or type(exc).__name__,
        timed_out=timed_out,
        duration_s=round(time.time() - t0, 2),
    )


def _call_gemini(
    model: str,
    system_prompt: Optional[str],
    user_prompt: str,
    temperature: float,
    max_output_tokens: Optional[int],
    timeout: Optional[float],
) -> LLMResult:
    from google import genai
    from google.genai import types

    api_key = get_api_key("gemini")
    if not api_key:
        return LLMResult(text="", error="GEMINI_API_KEY not set")

    http_options = types.HttpOptions(timeout=int(timeout * 1000)) if timeout else None
    client = genai.Client(api_key=api_key, http_options=http_options)
    t0 = time.time()

    config_kwargs: dict = {"temperature": temperature}
    if system_prompt:
        config_kwargs["system_instruction"] = system_prompt
    if max_output_tokens:
        config_kwargs["max_output_tokens"] = max_output_tokens

    try:
        response = client.models.generate_content(
            model=model,
            contents=[
                types.Content(
                    role="user",
                    parts=[types.Part.from_text(text=user_prompt)],
                )
            ],
            config=types.GenerateContentConfig(**config_kwargs),
        )

        text = response.text or ""
        usage = getattr(response, "usage_metadata", None)
        return LLMResult(
            text=text,
            input_tokens=getattr(usage, "prompt_token_count", 0) if usage else 0,
            output_tokens=getattr(usage, "candidates_token_count", 0) if usage else 0,
            duration_s=round(time.time() - t0, 2),
        )
    except Exception as e:
        return _failure("Gemini", model, e, t0)


def _call_openai(
    model: str,
    system_prompt: Optional[str],
    user_prompt: str,
    temperature: float,
    max_output_tokens: Optional[int],
    timeout: Optional[float],
) -> LLMResult:
    from openai import OpenAI

    api_key = get_api_key("openai")
    if not api_key:
        return LLMResult(text="", error="OPENAI_API_KEY not set")

    client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
    t0 = time.time()

    kwargs: dict = {
        "model": model,
        "input": [{"role": "user", "content": [{"type": "input_text", "text": user_prompt}]}],
        "temperature": temperature,
    }
    if system_prompt:
        kwargs["instructions"] = system_prompt
    if max_output_tokens:
        kwargs["max_output_tokens"] = max_output_tokens

    try:
        response = client.responses.create(**kwargs)

        usage = getattr(response, "usage", None)
        return LLMResult(
            text=response.output_text or "",
            input_tokens=getattr(usage, "input_tokens", 0) if usage else 0,
            output_tokens=getattr(usage, "output_tokens", 0) if usage else 0,
            duration_s=round(time.time() - t0, 2),
        )
    except Exception as e:
        return _failure("OpenAI", model, e, t0)


def _call_anthropic(
    model: str,
    system_prompt: Optional[str],
    user_prompt: str,
    temperature: float,
    max_output_tokens: Optional[int],
    timeout: Optional[float],
) -> LLMResult:
    import anthropic

    api_key = get_api_key("anthropic")
    if not api_key:
        return LLMResult(text="", error="ANTHROPIC_API_KEY not set")

    client = anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)
    t0 = time.time()

    kwargs: dict = {
        "model": model,
        "max_tokens": max_output_tokens or 1024,
        "temperature": temperature,
        "messages": [{"role": "user", "content": [{"type": "text", "text": user_prompt}]}],
    }
    if system_prompt:
        kwargs["system"] = system_prompt

    try:
        response = client.messages.create(**kwargs)
        text = "".join(
            getattr(block, "text", "") for block in (response.content or [])
        )
        usage = getattr(response, "usage", None)
        return LLMResult(
            text=text,
            input_tokens=getattr(usage, "input_tokens", 0) if usage else 0,
            output_tokens=getattr(usage, "output_tokens", 0) if usage else 0,
            duration_s=round(time.time() - t0, 2),
        )
    except Exception as e:
        return _failure("Anthropic", model, e, t0)


def llm_call(
    model: str,
    user_prompt: str,
    system_prompt: Optional[str] = None,
    temperature: float = 0.0,
    max_output_tokens: Optional[int] = None,
    timeout: Optional[float] = None,
) -> LLMResult:
    """Route an LLM call to the appropriate provider based on model name."""
    provider = provider_for(model)
    if provider == "openai":
        return _call_openai(model, system_prompt, user_prompt, temperature, max_output_tokens, timeout)
    if provider == "anthropic":
        return _call_anthropic(model, system_prompt, user_prompt, temperature, max_output_tokens, timeout)
    return _call_gemini(model, system_prompt, user_prompt, temperature, max_output_tokens, timeout)
