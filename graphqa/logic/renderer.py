"""Template Renderer: turns result rows into the final answer text.

Two forms:
    Single row:  every {field} placeholder in the template is replaced with
                 that field's display value in a single pass, so values that
                 themselves contain braces are emitted as-is. {parent.key}
                 reaches into a Nested value.
    Multi row:   rows are grouped by the display value of their first field
                 and emitted as labeled sections, one line per remaining field:

                     A
                     - name: x
                     - name: y

                     B
                     - name: z

Rendering is pure. A placeholder that names a field the row doesn't have is
left intact and reported as missing (RenderingIncomplete), never raised.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .errors import ErrorKind
from .state import FieldValue, Nested, Row, Scalar, format_scalar

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{?\s*([A-Za-z_][\w.]*)\s*\}?\}")

SECTION_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class RenderResult:
    text: str
    missing_fields: tuple[str, ...] = ()

    @property
    def incomplete(self) -> bool:
        return bool(self.missing_fields)

    @property
    def warning(self):
        return ErrorKind.RENDERING_INCOMPLETE if self.incomplete else None


def display_value(value: FieldValue) -> str:
    """Stringify a field value. Nested values become 'k: v, k: v'."""
    if isinstance(value, Nested):
        return ", ".join(f"{k}: {display_value(v)}" for k, v in value.items)
    return format_scalar(value.value)


def group_label(value: FieldValue) -> str:
    """Section label for a group. A node-like value is labeled by its name."""
    if isinstance(value, Nested):
        name = value.get("name")
        if isinstance(name, Scalar) and name.value not in (None, ""):
            return format_scalar(name.value)
    return display_value(value)


def _lookup(row: Row, name: str) -> Optional[FieldValue]:
    """Field value for a placeholder name; dotted names walk into Nested values."""
    value = row.get(name)
    if value is not None or "." not in name:
        return value
    head, *rest = name.split(".")
    value = row.get(head)
    for key in rest:
        if not isinstance(value, Nested):
            return None
        value = value.get(key)
    return value


def _substitute(template: str, row: Row) -> RenderResult:
    missing: list[str] = []

    def _fill(match: re.Match) -> str:
        name = match.group(1)
        value = _lookup(row, name)
        if value is None:
            if name not in missing:
                missing.append(name)
            return match.group(0)
        return display_value(value)

    # one pass over the template; substituted values are never rescanned
    text = PLACEHOLDER_RE.sub(_fill, template)
    return RenderResult(text=text, missing_fields=tuple(missing))


def _group(rows: list[Row]) -> RenderResult:
    groups: dict[str, list[str]] = {}
    for row in rows:
        if not row.fields:
            continue
        _, subject = row.fields[0]
        label = group_label(subject)
        lines = groups.setdefault(label, [])
        for name, value in row.fields[1:]:
            lines.append(f"- {name}: {display_value(value)}")

    sections = []
    for label, lines in groups.items():
        sections.append("\n".join([label] + lines))
    return RenderResult(text=SECTION_SEPARATOR.join(sections))


def render_template(template: str, rows: list[Row]) -> RenderResult:
    """Render rows into text, reporting any unfilled placeholders."""
    if not rows:
        raise ValueError("render_template needs at least one row")
    if len(rows) == 1:
        result = _substitute(template, rows[0])
    else:
        result = _group(rows)

    if result.incomplete:
        logger.warning(
            f"{ErrorKind.RENDERING_INCOMPLETE.value}: template references unknown "
            f"field(s) {list(result.missing_fields)}; placeholders left intact"
        )
    return result


def render(template: str, rows: list[Row]) -> str:
    return render_template(template, rows).text
