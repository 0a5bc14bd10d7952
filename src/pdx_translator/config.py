"""Configuration and constants."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigError

# Load environment variables once
load_dotenv()

API_KEY_ENV = "OPENAI_API_KEY"

# Glossary language slots, rank ordered. Slot N is stored under key str(N).
LANGUAGES: Tuple[str, ...] = (
    "english",
    "simp_chinese",
    "spanish",
    "french",
    "braz_por",
    "russian",
    "german",
    "japanese",
    "korean",
    "polish",
)

# Supported localisation file extensions
SUPPORTED_EXTENSIONS = {".yml", ".yaml"}

BUILTIN_GLOSSARY_DIR = "glossary"
USER_GLOSSARY_DIR = "glossary_custom"
PROMPT_TEMPLATE_FILE = "prompts/translate_system.txt"


def data_dirs() -> List[Path]:
    """Data directories in lookup order: ./data, then the per-user data dir."""
    return [
        Path.cwd() / "data",
        Path.home() / ".local" / "share" / "pmt" / "data",
    ]


@dataclass
class ClientSettings:
    """LLM client settings (``[client_settings]`` table of the task file)."""

    api_base: str = "https://api.deepseek.com"
    model: str = "deepseek-reasoner"
    temperature: float = 0.7
    # LLM translation can take a long time
    timeout_secs: float = 600.0
    max_retries: int = 3
    max_tokens: Optional[int] = None
    # Slice budget, measured with text_utils.estimate_tokens
    max_chunk_tokens: int = 4000
    # Used only when concurrency is enabled on the command line
    concurrency: int = 2
    retry_base_delay: float = 2.0
    retry_max_delay: float = 60.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientSettings":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(
                f"Unknown client setting(s): {', '.join(sorted(unknown))}",
                key="client_settings",
            )
        return cls(**data)

    def validate(self) -> None:
        """Raise ConfigError on the first invalid setting."""
        if not 0.0 <= self.temperature <= 2.0:
            raise ConfigError("temperature must be between 0.0 and 2.0", key="temperature")
        if self.timeout_secs <= 0:
            raise ConfigError("timeout_secs must be greater than 0", key="timeout_secs")
        if self.max_retries < 0:
            raise ConfigError("max_retries must not be negative", key="max_retries")
        if self.max_chunk_tokens < 100:
            raise ConfigError("max_chunk_tokens must be at least 100", key="max_chunk_tokens")
        if self.concurrency < 1 or self.concurrency > 50:
            raise ConfigError(f"concurrency must be 1-50, got {self.concurrency}", key="concurrency")
        if self.retry_base_delay < 0 or self.retry_max_delay < self.retry_base_delay:
            raise ConfigError(
                "retry delays must satisfy 0 <= retry_base_delay <= retry_max_delay",
                key="retry_base_delay",
            )

    def effective_concurrency(self, concurrent: bool) -> int:
        """Strictly sequential unless concurrency was explicitly enabled."""
        return self.concurrency if concurrent else 1


@dataclass
class TranslationTask:
    """One ``[[task]]`` table of the task file."""

    source_lang: str
    target_langs: List[str]
    localisation_dir: Path
    glossaries: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranslationTask":
        for key in ("source_lang", "target_langs", "localisation_dir"):
            if key not in data:
                raise ConfigError("Missing required field", key=key)
        target_langs = data["target_langs"]
        if isinstance(target_langs, str):
            target_langs = [target_langs]
        return cls(
            source_lang=data["source_lang"],
            target_langs=list(target_langs),
            localisation_dir=Path(data["localisation_dir"]).expanduser(),
            glossaries=list(data.get("glossaries", [])),
        )

    def validate(self) -> None:
        if not self.source_lang:
            raise ConfigError("source_lang must not be empty", key="source_lang")
        if not self.target_langs:
            raise ConfigError("target_langs must not be empty", key="target_langs")
        duplicates = sorted({lang for lang in self.target_langs if self.target_langs.count(lang) > 1})
        if duplicates:
            raise ConfigError(
                f"Duplicate target language(s): {', '.join(duplicates)}", key="target_langs"
            )
        if self.source_lang in self.target_langs:
            raise ConfigError(
                f"Source language '{self.source_lang}' is also a target", key="target_langs"
            )
        if not self.localisation_dir.is_dir():
            raise ConfigError(
                f"Localisation directory not found: {self.localisation_dir}",
                key="localisation_dir",
            )
        if not self.source_dir.is_dir():
            raise ConfigError(
                f"Source language directory not found: {self.source_dir}",
                key="source_lang",
            )

    @property
    def source_dir(self) -> Path:
        return self.localisation_dir / self.source_lang

    def target_dir(self, target_lang: str) -> Path:
        return self.localisation_dir / target_lang / "replace"


def load_task_file(path: Path) -> Tuple[ClientSettings, List[TranslationTask]]:
    """
    Load and validate a TOML task file.

    Relative ``localisation_dir`` values are resolved against the task
    file's directory.

    Raises:
        ConfigError: if the file is unreadable or any setting is invalid
    """
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read task file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    settings = ClientSettings.from_dict(data.get("client_settings", {}))
    settings.validate()

    raw_tasks = data.get("task", [])
    if not raw_tasks:
        raise ConfigError(f"No [[task]] found in {path}", key="task")

    tasks: List[TranslationTask] = []
    for raw in raw_tasks:
        task = TranslationTask.from_dict(raw)
        if not task.localisation_dir.is_absolute():
            task.localisation_dir = (path.parent / task.localisation_dir).resolve()
        task.validate()
        tasks.append(task)

    return settings, tasks


def has_api_key() -> bool:
    return bool(os.environ.get(API_KEY_ENV))


def load_api_key() -> str:
    api_key = os.environ.get(API_KEY_ENV)
    if not api_key:
        raise ConfigError(
            f"API key is required. Set {API_KEY_ENV} or add it to a .env file",
            key=API_KEY_ENV,
        )
    return api_key


def mask_api_key(key: str) -> str:
    if len(key) > 8:
        return f"{key[:4]}...{key[-4:]}"
    return "***"
