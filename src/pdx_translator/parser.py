"""Localisation file parsing and saving utilities."""

from __future__ import annotations

import os
import re
import logging
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .config import SUPPORTED_EXTENSIONS
from .models import LocalisationEntry, LocalisationFile

logger = logging.getLogger(__name__)

# Lines and their terminators, so that joining them gives back the input
_LINE_RE = re.compile(r"([^\r\n]*)(\r\n|\n|\r|$)")

# `  key:0 "value"  # comment`; the value ends at the last quote before an optional comment
_ENTRY_RE = re.compile(
    r'^(?P<prefix>[ \t]*(?P<key>[^\s:#"]+):(?P<version>\d*)[ \t]*")'
    r'(?P<value>.*)'
    r'(?P<suffix>"[ \t]*(?:#.*)?)$'
)

MAX_FILE_SIZE = 50 * 1024 * 1024  # 50MB


def _split_lines(text: str) -> Iterator[Tuple[str, str]]:
    for match in _LINE_RE.finditer(text):
        body, end = match.groups()
        if not body and not end:
            break
        yield body, end


def parse_localisation(content: str) -> LocalisationFile:
    """
    Parse localisation file content into ordered entries.

    Non-entry lines (the ``l_english:`` header, comments, blank lines) are
    attached to the following entry, or to the file trailer after the last
    one, so that ``serialize_localisation(parse_localisation(text)) == text``.
    """
    entries: List[LocalisationEntry] = []
    pending: List[str] = []

    for line_no, (body, end) in enumerate(_split_lines(content), 1):
        match = _ENTRY_RE.match(body)
        if match is None:
            pending.append(body + end)
            continue

        entries.append(LocalisationEntry(
            key=match.group("key"),
            value=match.group("value"),
            version=match.group("version") or None,
            line_no=line_no,
            leading="".join(pending),
            prefix=match.group("prefix"),
            suffix=match.group("suffix"),
            line_end=end,
        ))
        pending = []

    return LocalisationFile(entries=entries, trailer="".join(pending))


def serialize_localisation(document: LocalisationFile) -> str:
    """Render a parsed file back to text."""
    return "".join(e.to_text() for e in document.entries) + document.trailer


def retarget_header(document: LocalisationFile, source_lang: str, target_lang: str) -> LocalisationFile:
    """Rewrite the ``l_<source>:`` language header to ``l_<target>:``."""
    header_re = re.compile(rf"^([ \t]*)l_{re.escape(source_lang)}:", re.MULTILINE)
    replacement = rf"\1l_{target_lang}:"

    if document.entries:
        first = document.entries[0]
        entries = [first.copy(leading=header_re.sub(replacement, first.leading, count=1))]
        entries.extend(document.entries[1:])
        return document.with_entries(entries)

    return LocalisationFile(
        entries=[],
        trailer=header_re.sub(replacement, document.trailer, count=1),
    )


def target_filename(source_filename: str, source_lang: str, target_lang: str) -> str:
    """``l_english_foo.yml`` / ``foo_l_english.yml`` -> same name for the target language."""
    name = source_filename.replace(f"l_{source_lang}", f"l_{target_lang}")
    for ext in SUPPORTED_EXTENSIONS:
        name = name.replace(f"_{source_lang}{ext}", f"_{target_lang}{ext}")
    return name


def validate_localisation_file(path: Path) -> Optional[str]:
    """
    Validate a localisation file before processing.

    Returns:
        Error message if invalid, None if valid
    """
    if not path.exists():
        return f"File not found: {path}"

    if not path.is_file():
        return f"Not a file: {path}"

    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        return f"Invalid file extension: {suffix} (expected .yml or .yaml)"

    size = path.stat().st_size
    if size > MAX_FILE_SIZE:
        return f"File too large: {size / 1024 / 1024:.1f}MB (max 50MB)"

    return None


def find_localisation_files(directory: Path) -> List[Path]:
    """All localisation files below ``directory``, sorted for a stable order."""
    found = [
        p for p in directory.rglob("*")
        if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS
    ]
    return sorted(found, key=lambda p: p.relative_to(directory).as_posix())


def read_localisation(path: Path) -> LocalisationFile:
    """Read and parse a file, dropping a UTF-8 BOM and keeping line endings."""
    with path.open("r", encoding="utf-8-sig", newline="") as f:
        return parse_localisation(f.read())


def save_localisation(document: LocalisationFile, path: Path) -> None:
    """
    Save a localisation file with a UTF-8 BOM, as the game expects.

    The file is written next to its destination and moved into place, so an
    interrupted run never leaves a half-written file behind.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")

    with tmp_path.open("w", encoding="utf-8-sig", newline="") as f:
        f.write(serialize_localisation(document))
    os.replace(tmp_path, path)

    logger.info(f"Saved {len(document.entries)} entries to {path}")
