"""Data models shared across the translation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .glossary import GlossaryItem


@dataclass(frozen=True)
class LocalisationEntry:
    """A single ``key:0 "value"`` line of a localisation file.

    Everything around the value is kept verbatim so that an untouched entry
    serializes back to exactly the bytes it was parsed from.
    """

    key: str
    value: str
    version: Optional[str] = None
    line_no: int = 0
    # Header, comments and blank lines preceding this entry
    leading: str = ""
    # Indentation, key, colon, version and opening quote
    prefix: str = ""
    # Closing quote plus any trailing comment/whitespace
    suffix: str = '"'
    line_end: str = "\n"

    def to_text(self) -> str:
        """Render the entry with its leading lines."""
        return f"{self.leading}{self.prefix}{self.value}{self.suffix}{self.line_end}"

    def copy(self, **changes) -> "LocalisationEntry":
        """Create a copy with optional field changes."""
        return replace(self, **changes)


@dataclass
class LocalisationFile:
    """Parsed localisation file: ordered entries plus text after the last one."""

    entries: List[LocalisationEntry] = field(default_factory=list)
    trailer: str = ""

    @property
    def keys(self) -> List[str]:
        return [e.key for e in self.entries]

    def with_entries(self, entries: Sequence[LocalisationEntry]) -> "LocalisationFile":
        return LocalisationFile(entries=list(entries), trailer=self.trailer)


@dataclass(frozen=True)
class Slice:
    """Contiguous run of entries from one file, sent as one translation unit."""

    file_id: str
    index: int
    entries: Tuple[LocalisationEntry, ...]

    @property
    def slice_id(self) -> str:
        return f"{self.file_id}#{self.index}"

    @property
    def source_text(self) -> str:
        """Combined source text used for glossary matching."""
        return "\n".join(e.value for e in self.entries)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class TranslationRequest:
    """Everything needed to translate one slice into one target language."""

    slice: Slice
    glossary: Tuple["GlossaryItem", ...]
    source_lang: str
    target_lang: str
    template_id: str = "translate_system"


class EntryStatus(Enum):
    TRANSLATED = "translated"
    FAILED = "failed"


@dataclass(frozen=True)
class TranslationResult:
    """Outcome of a slice after its retries are exhausted or it succeeded.

    ``translations`` is aligned with the slice's entries; use :meth:`by_key`
    for a key-addressed view.
    """

    slice_index: int
    success: bool
    translations: Tuple[str, ...] = ()
    error: str = ""
    attempts: int = 0

    @classmethod
    def succeeded(cls, slice_: Slice, texts: Sequence[str], attempts: int = 1) -> "TranslationResult":
        if len(texts) != len(slice_.entries):
            raise ValueError(
                f"Expected {len(slice_.entries)} translations for {slice_.slice_id}, got {len(texts)}"
            )
        return cls(slice_index=slice_.index, success=True, translations=tuple(texts), attempts=attempts)

    @classmethod
    def failed(cls, slice_: Slice, error: str, attempts: int = 0) -> "TranslationResult":
        return cls(slice_index=slice_.index, success=False, error=error, attempts=attempts)

    def by_key(self, slice_: Slice) -> Dict[str, str]:
        return {e.key: text for e, text in zip(slice_.entries, self.translations)}


@dataclass(frozen=True)
class ReassembledEntry:
    """One output entry of a file after reassembly."""

    key: str
    text: str
    status: EntryStatus
    reason: str = ""
