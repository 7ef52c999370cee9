"""Message template rendering.

Templates use single-brace placeholders: "Hola {nombre}". Unknown
placeholders are left as-is so a missing variable never blanks a message.
A present key renders as str(value), except None which renders as "".
"""

import re
from typing import Any, Mapping

PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def render_template(template: str, context: Mapping[str, Any] | None) -> str:
    """Substitute {identifier} tokens from context."""
    if not template or not context:
        return template

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in context:
            return match.group(0)
        value = context[key]
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def extract_variables(template: str) -> list[str]:
    """List placeholder names in order of first appearance."""
    seen: list[str] = []
    for name in PLACEHOLDER_PATTERN.findall(template or ""):
        if name not in seen:
            seen.append(name)
    return seen
