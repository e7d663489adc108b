"""Parsing of upstream checksum listings (``sha256sum.txt`` style files)."""

from __future__ import annotations

import re
from typing import Dict

FORMAT_GNU = "gnu"
FORMAT_BSD = "bsd"

_GNU_LINE_RE = re.compile(r"^([0-9a-fA-F]+) [ *](.+)$")
_BSD_LINE_RE = re.compile(r"^\w+ \((.+)\) = ([0-9a-fA-F]+)$")


def parse(text: str, fmt: str = FORMAT_GNU) -> Dict[str, str]:
    """Return a ``{file name: checksum}`` mapping.

    GNU lines look like ``<sum>  <file>`` (``<sum> *<file>`` in binary mode), BSD lines
    like ``SHA256 (<file>) = <sum>``. Blank lines and ``#`` comments are ignored; any
    other line raises ValueError.
    """
    if fmt not in (FORMAT_GNU, FORMAT_BSD):
        raise ValueError(f"unknown checksum format '{fmt}'")
    checksums: Dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if fmt == FORMAT_GNU:
            match = _GNU_LINE_RE.match(line)
            if match is None:
                raise ValueError(f"line {lineno}: not a GNU checksum line: '{line}'")
            checksum, name = match.group(1), match.group(2)
        else:
            match = _BSD_LINE_RE.match(line)
            if match is None:
                raise ValueError(f"line {lineno}: not a BSD checksum line: '{line}'")
            name, checksum = match.group(1), match.group(2)
        checksums[name] = checksum.lower()
    return checksums
