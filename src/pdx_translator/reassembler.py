"""Merge per-slice results back into a file's ordered entries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Sequence

from .errors import ReassemblyError
from .models import (
    EntryStatus,
    LocalisationFile,
    ReassembledEntry,
    Slice,
    TranslationResult,
)

logger = logging.getLogger(__name__)


def reassemble(
    file_id: str,
    results: Mapping[int, TranslationResult],
    slices: Sequence[Slice],
) -> List[ReassembledEntry]:
    """
    Emit every entry of a file in original order.

    Entries of failed slices keep their source text and get FAILED status.

    Raises:
        ReassemblyError: if any slice of the file is unresolved, or results
            do not line up with the slices
    """
    expected = set(range(len(slices)))
    missing = sorted(expected - set(results))
    if missing:
        raise ReassemblyError(f"{file_id}: slices {missing} are not resolved yet")
    unknown = sorted(set(results) - expected)
    if unknown:
        raise ReassemblyError(f"{file_id}: results for unknown slices {unknown}")

    output: List[ReassembledEntry] = []
    for slice_ in sorted(slices, key=lambda s: s.index):
        result = results[slice_.index]

        if not result.success:
            output.extend(
                ReassembledEntry(e.key, e.value, EntryStatus.FAILED, result.error)
                for e in slice_.entries
            )
            continue

        if len(result.translations) != len(slice_.entries):
            raise ReassemblyError(
                f"{file_id}: slice {slice_.index} has {len(slice_.entries)} entries "
                f"but {len(result.translations)} translations"
            )
        output.extend(
            ReassembledEntry(e.key, text, EntryStatus.TRANSLATED)
            for e, text in zip(slice_.entries, result.translations)
        )

    return output


def apply_translations(
    document: LocalisationFile,
    reassembled: Sequence[ReassembledEntry],
) -> LocalisationFile:
    """Replace the values of ``document``'s entries, keeping all formatting."""
    if len(reassembled) != len(document.entries):
        raise ReassemblyError(
            f"Expected {len(document.entries)} entries, got {len(reassembled)}"
        )

    entries = []
    for entry, new in zip(document.entries, reassembled):
        if entry.key != new.key:
            raise ReassemblyError(f"Entry order changed: expected '{entry.key}', got '{new.key}'")
        entries.append(entry if new.text == entry.value else entry.copy(value=new.text))

    return document.with_entries(entries)


@dataclass(frozen=True)
class FailedEntry:
    file: str
    key: str
    reason: str


@dataclass(frozen=True)
class SkippedFile:
    file: str
    reason: str


@dataclass
class FailureReport:
    """Entries left untranslated during a run, for the end-of-run summary.

    ``failed`` holds entries that kept their source text, ``incomplete_files``
    the outputs not written because the run stopped, and ``skipped_files`` the
    source files that could not be read at all.
    """

    failed: List[FailedEntry] = field(default_factory=list)
    incomplete_files: List[str] = field(default_factory=list)
    skipped_files: List[SkippedFile] = field(default_factory=list)

    def record(self, file_id: str, reassembled: Sequence[ReassembledEntry]) -> None:
        """
        Add the failed entries of one reassembled file.

        Args:
            file_id: Output file the entries belong to
            reassembled: All entries of the file; translated ones are ignored
        """
        self.failed.extend(
            FailedEntry(file_id, e.key, e.reason)
            for e in reassembled
            if e.status is EntryStatus.FAILED
        )

    def skip(self, file: str, reason: str) -> None:
        """Note a source file that could not be read; nothing was translated for it."""
        self.skipped_files.append(SkippedFile(file, reason))

    def merge(self, other: "FailureReport") -> None:
        self.failed.extend(other.failed)
        self.incomplete_files.extend(other.incomplete_files)
        self.skipped_files.extend(other.skipped_files)

    def __bool__(self) -> bool:
        return bool(self.failed or self.incomplete_files or self.skipped_files)

    def log_summary(self) -> None:
        if not self:
            logger.info("All entries translated successfully")
            return

        for skipped in self.skipped_files:
            logger.warning(f"Skipped (unreadable): {skipped.file}: {skipped.reason}")
        for file_id in self.incomplete_files:
            logger.warning(f"Not written (incomplete): {file_id}")
        for item in self.failed:
            logger.warning(f"Failed: {item.file} '{item.key}': {item.reason}")
        logger.warning(
            f"{len(self.failed)} entries kept their source text, "
            f"{len(self.incomplete_files)} files not written, "
            f"{len(self.skipped_files)} source files skipped"
        )
