"""Directory listing model for the brick's file system.

A LIST_FILES reply is newline-delimited text::

    5d41402abc4b2a76b9719d911017c592 00000005 test.txt
    ../
    prjs/

Files carry a 32-hex MD5, an 8-hex size and the name; directories are the
name followed by ``/``.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass

_FILE_LINE = re.compile(r"^([0-9A-Fa-f]{32}) ([0-9A-Fa-f]{8}) (.+)$")


@dataclass(frozen=True)
class FileEntry:
    """One line of a directory listing."""

    name: str
    is_dir: bool = False
    size: int = 0
    md5: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def parse_listing_line(line: str) -> FileEntry | None:
    """Parse one listing line, returning ``None`` for blank or junk lines."""
    line = line.rstrip("\r\x00")
    if not line:
        return None
    match = _FILE_LINE.match(line)
    if match:
        md5, size, name = match.groups()
        return FileEntry(name=name, size=int(size, 16), md5=md5)
    if line.endswith("/"):
        return FileEntry(name=line[:-1], is_dir=True)
    return None


def parse_file_listing(text: str) -> list[FileEntry]:
    """Parse a full listing into entries, in the order the brick sent them."""
    entries = []
    for line in text.split("\n"):
        entry = parse_listing_line(line)
        if entry is not None:
            entries.append(entry)
    return entries
