"""Error taxonomy for the translation pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class RequestErrorKind(Enum):
    """Retryable request failure causes."""
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    TRANSPORT = "transport"
    MALFORMED = "malformed"


class TranslatorError(Exception):
    """Base exception for all custom errors."""


class ConfigError(TranslatorError):
    """Invalid task configuration. Aborts the run before any request is sent."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key

    def __str__(self) -> str:
        message = super().__str__()
        if self.key:
            return f"{message} (config key: {self.key})"
        return message


class GlossaryLoadError(TranslatorError):
    """A glossary file could not be found, read or decoded."""

    def __init__(self, message: str, path=None):
        super().__init__(message)
        self.path = path


class RequestError(TranslatorError):
    """A single LLM request failed in a way that may succeed on retry."""

    def __init__(self, kind: RequestErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind

    def __str__(self) -> str:
        return f"{self.kind.value}: {super().__str__()}"


class AuthError(TranslatorError):
    """The API rejected our credentials. Fatal for the whole task."""


class ReassemblyError(TranslatorError):
    """Slice results are inconsistent with the slices of a file."""
