"""``{name}`` placeholder templates shared by the text nodes.

A literal brace is written doubled: ``{{`` renders as ``{`` and ``}}`` as
``}``. A lone brace outside a placeholder is a malformed template.
"""

from __future__ import annotations

import re
from typing import Any, List, Mapping

from nodeflow.errors import ValidationError

_NAME = r"[A-Za-z0-9_][A-Za-z0-9_.-]*"
PLACEHOLDER_RE = re.compile(r"\{\{|\}\}|\{(" + _NAME + r")\}")


def check_template(template: str) -> None:
    """Raise ``ValidationError`` when braces are unbalanced or nested."""

    depth = 0
    pos = 0
    while pos < len(template):
        pair = template[pos:pos + 2]
        if depth == 0 and pair in ("{{", "}}"):
            pos += 2
            continue
        ch = template[pos]
        if ch == "{":
            depth += 1
            if depth > 1:
                raise ValidationError(f"nested brace at {pos}", code="MALFORMED_TEMPLATE")
        elif ch == "}":
            depth -= 1
            if depth < 0:
                raise ValidationError(f"unmatched '}}' at {pos}", code="MALFORMED_TEMPLATE")
        pos += 1
    if depth:
        raise ValidationError("unclosed '{'", code="MALFORMED_TEMPLATE")


def placeholders(template: str) -> List[str]:
    return [name for name in PLACEHOLDER_RE.findall(template) if name]


def render(template: str, values: Mapping[str, Any]) -> str:
    """Substitute known placeholders and unescape doubled braces.

    Unknown placeholders are left untouched.
    """

    def replace(match: re.Match) -> str:
        key = match.group(1)
        if key is None:
            return match.group(0)[0]
        if key in values and values[key] is not None:
            return str(values[key])
        return match.group(0)

    return PLACEHOLDER_RE.sub(replace, template)
