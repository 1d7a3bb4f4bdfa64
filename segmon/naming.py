"""Segment file naming: ``<base>_part<NNN><extension>``.

Every segment of one recording session shares the same base identity, the
ordinal lives in the three digits following the marker. Parsing is plain
string scanning so that any tool listing a directory can reproduce it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = [
    "DEFAULT_EXTENSION",
    "FALLBACK_BASE",
    "INDEX_WIDTH",
    "SEGMENT_MARKER",
    "SegmentFile",
    "extract_base_identity",
    "extract_segment_index",
    "format_segment_name",
    "initial_segment_name",
    "list_segments",
    "next_segment_name",
    "next_segment_path",
]

SEGMENT_MARKER = "_part"
INDEX_WIDTH = 3
DEFAULT_EXTENSION = ".mp4"
FALLBACK_BASE = "recording"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

_ASCII_DIGITS = frozenset("0123456789")


@dataclass(frozen=True, slots=True)
class SegmentFile:
    """A file on disk whose name carries a segment marker."""

    path: Path
    base: str
    index: int

    def to_dict(self) -> dict[str, object]:
        return {
            "path": str(self.path),
            "name": self.path.name,
            "base": self.base,
            "index": self.index,
        }


def _find_marker(text: str, start: int = 0) -> int:
    """Return the offset of the next marker followed by three digits, or -1."""
    pos = text.find(SEGMENT_MARKER, start)
    while pos != -1:
        digits = text[pos + len(SEGMENT_MARKER):pos + len(SEGMENT_MARKER) + INDEX_WIDTH]
        if len(digits) == INDEX_WIDTH and all(ch in _ASCII_DIGITS for ch in digits):
            return pos
        pos = text.find(SEGMENT_MARKER, pos + 1)
    return -1


def _strip_extension(name: str) -> str:
    stem, dot, _ = name.rpartition(".")
    return stem if dot else name


def extract_segment_index(name: str) -> int:
    """Ordinal from ``..._part007.mp4`` style names, 0 when no marker is present."""
    pos = _find_marker(name)
    if pos == -1:
        return 0
    offset = pos + len(SEGMENT_MARKER)
    return int(name[offset:offset + INDEX_WIDTH])


def extract_base_identity(name: str) -> str:
    """E.g. ``recording_20231114_123456_part000.mp4`` -> ``recording_20231114_123456``."""
    base = _strip_extension(name)
    pos = _find_marker(base)
    while pos != -1:
        base = base[:pos] + base[pos + len(SEGMENT_MARKER) + INDEX_WIDTH:]
        pos = _find_marker(base)
    return base or FALLBACK_BASE


def format_segment_name(base: str, index: int, extension: str = DEFAULT_EXTENSION) -> str:
    if index < 0:
        raise ValueError("segment index must be non-negative")
    return f"{base}{SEGMENT_MARKER}{index:0{INDEX_WIDTH}d}{extension}"


def next_segment_name(base: str, current_index: int, extension: str = DEFAULT_EXTENSION) -> str:
    return format_segment_name(base, current_index + 1, extension)


def next_segment_path(
    current_file: str | os.PathLike[str],
    base: str,
    current_index: int,
    extension: str = DEFAULT_EXTENSION,
) -> Path:
    """Absolute path of the segment following ``current_file`` in the same directory."""
    parent = Path(current_file).parent
    return (parent / next_segment_name(base, current_index, extension)).absolute()


def initial_segment_name(
    prefix: str = FALLBACK_BASE,
    when: datetime | None = None,
    extension: str = DEFAULT_EXTENSION,
) -> str:
    """First segment name of a new session, e.g. ``recording_20240101_000000_part000.mp4``."""
    stamp = (when or datetime.now()).strftime(TIMESTAMP_FORMAT)
    return format_segment_name(f"{prefix}_{stamp}", 0, extension)


def list_segments(directory: str | os.PathLike[str], base: str | None = None) -> list[SegmentFile]:
    """Segment files in ``directory`` ordered by base identity and ordinal."""
    root = Path(directory)
    try:
        entries = list(root.iterdir())
    except FileNotFoundError:
        return []
    segments: list[SegmentFile] = []
    for entry in entries:
        if not entry.is_file():
            continue
        if _find_marker(entry.name) == -1:
            continue
        entry_base = extract_base_identity(entry.name)
        if base is not None and entry_base != base:
            continue
        segments.append(SegmentFile(entry, entry_base, extract_segment_index(entry.name)))
    segments.sort(key=lambda seg: (seg.base, seg.index, seg.path.name))
    return segments
