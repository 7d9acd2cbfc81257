"""Parsing of the conflict markers git leaves in merged files."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

# <<<<<<< ours / ||||||| base (diff3, optional) / ======= / >>>>>>> theirs
_CONFLICT_RE = re.compile(
    r"^<{7}(?: [^\r\n]*)?\r?\n"
    r"(?P<local>.*?)"
    r"(?:^\|{7}(?: [^\r\n]*)?\r?\n(?P<base>.*?))?"
    r"^={7}\r?\n"
    r"(?P<remote>.*?)"
    r"^>{7}(?: [^\r\n]*)?\r?$",
    re.DOTALL | re.MULTILINE,
)


@dataclass(frozen=True)
class ConflictRegion:
    local: str
    remote: str
    base: Optional[str] = None


def has_conflict_markers(content: str) -> bool:
    return _CONFLICT_RE.search(content) is not None


def parse_conflict_markers(content: str) -> ConflictRegion:
    """Extract the first conflict region of ``content``.

    Segments are stripped. A file without markers yields its full content on
    both sides and no base. Later regions in the same file are not parsed.
    """
    match = _CONFLICT_RE.search(content)
    if match is None:
        return ConflictRegion(local=content, remote=content, base=None)

    base = match.group("base")
    base = base.strip() if base is not None else ""
    return ConflictRegion(
        local=match.group("local").strip(),
        remote=match.group("remote").strip(),
        base=base or None,
    )
