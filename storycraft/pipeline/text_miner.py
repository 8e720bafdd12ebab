"""Best-effort field scraping for model output that is not JSON."""

from __future__ import annotations

import re
from typing import List, Pattern


def _patterns(field_name: str) -> List[Pattern[str]]:
    name = re.escape(field_name)
    return [
        re.compile(rf"{name}[:\s]+([^\n,]+)", re.I),
        re.compile(rf'"{name}"[:\s]*"([^"]+)"', re.I),
        re.compile(rf"{name}[:\s]*([^\n,.]+)", re.I),
    ]


def mine_field(text: str, field_name: str, fallback: str) -> str:
    """Return the first value that looks like `<field_name>: value` in text, else fallback."""
    if not text:
        return fallback
    for pattern in _patterns(field_name):
        m = pattern.search(text)
        if m and m.group(1).strip():
            return m.group(1).strip().strip('"').strip()
    return fallback
