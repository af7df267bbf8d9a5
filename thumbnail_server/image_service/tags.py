import re
import unicodedata
from typing import Iterable, List

_WHITESPACE = re.compile(r"\s+")

def normalize_tag(tag: str) -> str:
    """NFKC, trim, collapse inner whitespace, casefold. May return ''."""
    tag = unicodedata.normalize("NFKC", tag)
    tag = _WHITESPACE.sub(" ", tag).strip()
    return tag.casefold()

def normalize_tags(tags: Iterable[str]) -> List[str]:
    """Normalized, de-duplicated and sorted; empty tags are dropped."""
    return sorted({t for t in (normalize_tag(tag) for tag in tags) if t})

def has_control_chars(value: str) -> bool:
    return any(unicodedata.category(ch) == "Cc" for ch in value)

def split_tag_field(raw) -> List[str]:
    """Splits a comma separated form field into raw tag strings."""
    if not raw:
        return []
    return raw.split(",")
