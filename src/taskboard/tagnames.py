from __future__ import annotations

from typing import Iterable, List, Optional


# PUBLIC_INTERFACE
def normalize_tag_name(name: object) -> Optional[str]:
    """Return the canonical (trimmed, lower-cased) form of a tag name, or None if blank."""
    if not isinstance(name, str):
        return None
    s = name.strip().lower()
    return s or None


# PUBLIC_INTERFACE
def normalize_tag_names(names: Optional[Iterable[object]]) -> List[str]:
    """
    Canonicalize free-text tag names.

    Blank and non-string entries are dropped silently so that one malformed tag
    never blocks a write. Duplicates collapse to their first occurrence, which
    keeps the output order deterministic.

    Example:
        normalize_tag_names(["Work", " work ", "WORK", ""]) -> ["work"]
    """
    seen: dict[str, None] = {}
    for raw in names or ():
        s = normalize_tag_name(raw)
        if s is not None and s not in seen:
            seen[s] = None
    return list(seen)
