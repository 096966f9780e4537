import re
from collections import Counter
from typing import Iterable, List

from models import DEFAULT_TAG_COLOR

_HEX_COLOR = re.compile(r"^[0-9a-fA-F]{6}$")
_SHORT_HEX_COLOR = re.compile(r"^[0-9a-fA-F]{3}$")


def normalize_ip(raw) -> str:
    if raw is None or isinstance(raw, bool):
        return ""
    if isinstance(raw, (int, float)):
        raw = str(raw)
    if not isinstance(raw, str):
        return ""
    return raw.strip()


def normalize_tag_color(raw, default: str = DEFAULT_TAG_COLOR) -> str:
    """Return a 6-digit upper-case hex colour without the leading '#'."""
    if not isinstance(raw, str):
        return default
    value = raw.strip().lstrip("#")
    if _SHORT_HEX_COLOR.match(value):
        value = "".join(ch * 2 for ch in value)
    if not _HEX_COLOR.match(value):
        return default
    return value.upper()


def parse_flag(value, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off", ""):
            return False
    return default


def parse_priority(value) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(float(str(value).strip()))
    except ValueError:
        return 0


def optional_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def duplicate_values(values: Iterable[str]) -> List[str]:
    """Distinct values seen more than once, in order of first appearance."""
    items = list(values)
    counts = Counter(items)
    seen = set()
    result: List[str] = []
    for value in items:
        if counts[value] > 1 and value not in seen:
            seen.add(value)
            result.append(value)
    return result
