from __future__ import annotations

import re
from typing import Any


_VAR_RE = re.compile(r"\{\{\s*(?P<key>[a-zA-Z0-9_]+)\s*\}\}")


def render_template(template: str, variables: dict[str, Any]) -> str:
    """Fill `{{var}}` placeholders used by prompt and media URL templates.

    Missing or `None` variables render as an empty string.
    """

    def _replace(match: re.Match[str]) -> str:
        value = variables.get(match.group("key"))
        return "" if value is None else str(value)

    return _VAR_RE.sub(_replace, template)
