"""
``${name}`` placeholder rendering for query and command templates.

Values are substituted as text. Numbers render bare, everything else is
wrapped in single quotes and a missing value renders as ``NULL``. Quotes
inside string values are NOT escaped unless ``escape_quotes`` is set, so a
value containing ``'`` can end the literal early. Templates are expected to
come from trusted authors; the keyword deny-list in ``validation`` is the
only other guard.
"""
import re
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

NULL_LITERAL = "NULL"


def extract_placeholders(text: Optional[str]) -> List[str]:
    """Placeholder names in order of first appearance, without duplicates."""
    if not text:
        return []
    names: List[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(text):
        name = match.group(1)
        if name not in names:
            names.append(name)
    return names


def render_value(value: Any, escape_quotes: bool = False) -> str:
    if value is None:
        return NULL_LITERAL
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    text = str(value)
    if escape_quotes:
        text = text.replace("'", "''")
    return f"'{text}'"


def render_template(
    text: str,
    params: Optional[Mapping[str, Any]] = None,
    escape_quotes: bool = False,
) -> str:
    if not text:
        return text
    params = params or {}
    rendered: Dict[str, str] = {
        name: render_value(params.get(name), escape_quotes) for name in extract_placeholders(text)
    }
    return PLACEHOLDER_PATTERN.sub(lambda m: rendered[m.group(1)], text)


def missing_parameters(text: str, params: Optional[Mapping[str, Any]] = None) -> List[str]:
    params = params or {}
    return [name for name in extract_placeholders(text) if name not in params]
