"""
Paradox Mod Translator - LLM-powered translator for Paradox game mod localisation.

Features:
- Format-preserving parsing of ``l_<language>:`` localisation files
- Multilingual glossaries for consistent terminology
- Token-bounded slicing of large files
- Bounded-concurrency requests with retry and backoff
- Partial failures recorded per entry instead of aborting the run
"""

__version__ = "0.3.0"

from .models import (
    LocalisationEntry,
    LocalisationFile,
    Slice,
    TranslationRequest,
    TranslationResult,
    ReassembledEntry,
    EntryStatus,
)
from .errors import (
    TranslatorError,
    ConfigError,
    GlossaryLoadError,
    RequestError,
    RequestErrorKind,
    AuthError,
    ReassemblyError,
)
from .config import ClientSettings, TranslationTask, load_task_file
from .parser import parse_localisation, serialize_localisation, read_localisation, save_localisation
from .glossary import (
    GlossaryItem,
    GlossaryIndex,
    load_glossaries,
    resolve_glossary_paths,
    find_matching_terms,
)
from .slicer import slice_entries
from .translator import build_prompt, build_request, parse_translation_response
from .llm_client import create_client
from .orchestrator import Orchestrator, ResultTable, RetryPolicy, SliceState, WorkUnit
from .reassembler import reassemble, apply_translations, FailureReport
from .pipeline import translate_task, validate_task

__all__ = [
    # Models
    "LocalisationEntry",
    "LocalisationFile",
    "Slice",
    "TranslationRequest",
    "TranslationResult",
    "ReassembledEntry",
    "EntryStatus",
    # Errors
    "TranslatorError",
    "ConfigError",
    "GlossaryLoadError",
    "RequestError",
    "RequestErrorKind",
    "AuthError",
    "ReassemblyError",
    # Config
    "ClientSettings",
    "TranslationTask",
    "load_task_file",
    # Parsing
    "parse_localisation",
    "serialize_localisation",
    "read_localisation",
    "save_localisation",
    # Glossary
    "GlossaryItem",
    "GlossaryIndex",
    "load_glossaries",
    "resolve_glossary_paths",
    "find_matching_terms",
    # Translation
    "slice_entries",
    "build_prompt",
    "build_request",
    "parse_translation_response",
    "create_client",
    "Orchestrator",
    "ResultTable",
    "RetryPolicy",
    "SliceState",
    "WorkUnit",
    "reassemble",
    "apply_translations",
    "FailureReport",
    # Tasks
    "translate_task",
    "validate_task",
]
