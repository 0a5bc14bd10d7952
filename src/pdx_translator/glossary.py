"""Glossary loading, indexing and term matching."""

from __future__ import annotations

import csv
import io
import json
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import BUILTIN_GLOSSARY_DIR, LANGUAGES, USER_GLOSSARY_DIR, data_dirs
from .errors import GlossaryLoadError

logger = logging.getLogger(__name__)

_SLOT_KEYS = {str(n): n - 1 for n in range(1, len(LANGUAGES) + 1)}


@dataclass(frozen=True)
class GlossaryItem:
    """
    A multilingual term: at most one string per language slot.

    ``originals`` keeps the casing from the file for use in prompts;
    ``terms`` holds the lowercased values used for matching. A missing
    language is ``None`` in both.
    """

    originals: Tuple[Optional[str], ...]
    terms: Tuple[Optional[str], ...]

    @classmethod
    def from_languages(cls, **values: str) -> "GlossaryItem":
        """Build an item from ``english="Energy", simp_chinese="能量"`` style kwargs."""
        originals: List[Optional[str]] = [None] * len(LANGUAGES)
        for lang, value in values.items():
            originals[LANGUAGES.index(lang)] = value
        return cls._build(originals)

    @classmethod
    def from_record(cls, record: Any) -> "GlossaryItem":
        """
        Build an item from a JSON record keyed by slot number ("1".."10").

        Unknown keys are ignored.

        Raises:
            ValueError: if the record is not an object, a present slot is not
                a string, or no slot is populated
        """
        if not isinstance(record, dict):
            raise ValueError(f"record must be an object, got {type(record).__name__}")

        originals: List[Optional[str]] = [None] * len(LANGUAGES)
        for key, value in record.items():
            slot = _SLOT_KEYS.get(key)
            if slot is None:
                continue
            if not isinstance(value, str):
                raise ValueError(f"value for key {key!r} must be a string, got {type(value).__name__}")
            originals[slot] = value
        return cls._build(originals)

    @classmethod
    def _build(cls, originals: List[Optional[str]]) -> "GlossaryItem":
        cleaned = [v.strip() if v and v.strip() else None for v in originals]
        if not any(cleaned):
            raise ValueError("record must contain at least one language field")
        return cls(
            originals=tuple(cleaned),
            terms=tuple(v.lower() if v else None for v in cleaned),
        )

    def get(self, lang: str) -> Optional[str]:
        """Lowercased term for ``lang``."""
        if lang not in LANGUAGES:
            return None
        return self.terms[LANGUAGES.index(lang)]

    def original(self, lang: str) -> Optional[str]:
        """Term for ``lang`` as written in the glossary file."""
        if lang not in LANGUAGES:
            return None
        return self.originals[LANGUAGES.index(lang)]

    def has_language(self, lang: str) -> bool:
        return self.get(lang) is not None


class GlossaryIndex:
    """Read-only term index built once per task.

    Maps each language's lowercased term to its item. When two items share a
    term, the one loaded last wins.
    """

    def __init__(self, items: Iterable[GlossaryItem] = ()):
        self._items: Tuple[GlossaryItem, ...] = tuple(items)
        self._by_lang: Dict[str, Dict[str, GlossaryItem]] = {}
        for lang in LANGUAGES:
            mapping: Dict[str, GlossaryItem] = {}
            for item in self._items:
                term = item.get(lang)
                if term:
                    mapping[term] = item
            self._by_lang[lang] = mapping

    @property
    def items(self) -> Tuple[GlossaryItem, ...]:
        return self._items

    def terms(self, lang: str) -> Mapping[str, GlossaryItem]:
        """
        Terms of one language slot, keyed by lowercased term.

        Args:
            lang: Language name, e.g. "english"

        Returns:
            Mapping owned by the index; empty when the language has no terms
        """
        return self._by_lang.get(lang, {})

    def lookup(self, term: str, lang: str) -> Optional[GlossaryItem]:
        """Case-insensitive lookup of a source term."""
        return self.terms(lang).get(term.strip().lower())

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return len(self._items) > 0


def load_glossary_file(path: Path) -> List[GlossaryItem]:
    """
    Load the items of one glossary file.

    The file is a JSON object of ``{id: record}`` or a JSON array of records.
    Malformed records are skipped with a warning.

    Raises:
        GlossaryLoadError: if the file cannot be read or is not valid JSON
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8-sig"))
    except OSError as e:
        raise GlossaryLoadError(f"Cannot read glossary {path}: {e}", path=path) from e
    except json.JSONDecodeError as e:
        raise GlossaryLoadError(f"Invalid JSON in glossary {path}: {e}", path=path) from e

    if isinstance(data, dict):
        records = list(data.items())
    elif isinstance(data, list):
        records = list(enumerate(data))
    else:
        raise GlossaryLoadError(
            f"Glossary {path} must be a JSON object or array, got {type(data).__name__}",
            path=path,
        )

    items: List[GlossaryItem] = []
    for record_id, record in records:
        try:
            items.append(GlossaryItem.from_record(record))
        except ValueError as e:
            logger.warning(f"Skipping glossary entry {record_id!r} in {path.name}: {e}")

    return items


def load_glossaries(paths: Sequence[Path]) -> GlossaryIndex:
    """
    Load glossary files in the given order and build one index.

    Raises:
        GlossaryLoadError: if any file cannot be loaded
    """
    items: List[GlossaryItem] = []
    for path in paths:
        logger.debug(f"Loading glossary: {path}")
        loaded = load_glossary_file(path)
        items.extend(loaded)
        logger.info(f"Loaded glossary '{path.stem}' with {len(loaded)} entries")

    return GlossaryIndex(items)


def _find_data_file(relative: str, search_dirs: Sequence[Path]) -> Optional[Path]:
    for base in search_dirs:
        candidate = base / relative
        if candidate.is_file():
            return candidate
    return None


def resolve_glossary_paths(
    names: Sequence[str],
    search_dirs: Optional[Sequence[Path]] = None,
) -> List[Path]:
    """
    Locate the files for the glossary names of a task.

    For each name the built-in ``glossary/<name>.json`` and the user's
    ``glossary_custom/<name>.json`` are both used when present. Built-in
    files come first, then user files, each sorted by filename, so user
    terms override built-in ones.

    Raises:
        GlossaryLoadError: if a name matches no file at all
    """
    dirs = list(search_dirs) if search_dirs is not None else data_dirs()
    builtin: List[Path] = []
    user: List[Path] = []

    for name in names:
        builtin_rel = f"{BUILTIN_GLOSSARY_DIR}/{name}.json"
        user_rel = f"{USER_GLOSSARY_DIR}/{name}.json"
        builtin_path = _find_data_file(builtin_rel, dirs)
        user_path = _find_data_file(user_rel, dirs)

        if builtin_path is None and user_path is None:
            searched = "\n".join(f"  {d / rel}" for d in dirs for rel in (user_rel, builtin_rel))
            raise GlossaryLoadError(f"Glossary file not found: '{name}'. Searched in:\n{searched}")

        if builtin_path is not None:
            builtin.append(builtin_path)
        if user_path is not None:
            user.append(user_path)

    return sorted(builtin, key=lambda p: p.name) + sorted(user, key=lambda p: p.name)


@lru_cache(maxsize=None)
def _term_pattern(term: str) -> re.Pattern:
    # Bounded by non-alphanumeric characters or the text edges
    return re.compile(rf"(?<![^\W_]){re.escape(term)}(?![^\W_])")


def find_matching_terms(
    source_text: str,
    index: GlossaryIndex,
    source_lang: str,
    target_lang: str,
) -> List[GlossaryItem]:
    """
    Find glossary items whose source term appears in the text as a whole word.

    Matching is case-insensitive. Items lacking either language are skipped.

    Returns:
        Distinct items ordered by first appearance in ``source_text``
    """
    text_lower = source_text.lower()
    found: Dict[GlossaryItem, int] = {}

    for term, item in index.terms(source_lang).items():
        if not item.has_language(target_lang):
            continue
        if term not in text_lower:
            continue
        match = _term_pattern(term).search(text_lower)
        if match is None:
            continue
        pos = match.start()
        if item not in found or pos < found[item]:
            found[item] = pos

    return sorted(found, key=found.__getitem__)


def glossary_to_csv(items: Sequence[GlossaryItem], source_lang: str, target_lang: str) -> str:
    """
    Format matched terms as CSV for embedding in the prompt.

    ```
    english,simp_chinese
    Energy,能量
    ```
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([source_lang, target_lang])
    for item in items:
        writer.writerow([item.original(source_lang), item.original(target_lang)])
    return buffer.getvalue().rstrip("\n")
