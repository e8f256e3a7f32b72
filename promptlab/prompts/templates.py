"""{{variable}} placeholder extraction and substitution for prompt text."""

import re

PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}", re.ASCII)


def extract_variables(content: str) -> list[str]:
    """Unique placeholder names in first-seen order."""
    return list(dict.fromkeys(PLACEHOLDER_RE.findall(content)))


def substitute_variables(content: str, values: dict[str, str]) -> str:
    """Replace placeholders that have a binding; leave the rest verbatim."""
    def _replace(match: re.Match) -> str:
        name = match.group(1)
        return str(values[name]) if name in values else match.group(0)

    return PLACEHOLDER_RE.sub(_replace, content)
