"""Shared fixtures and fake LLM clients."""

import asyncio
import json
from typing import Callable, List

import pytest

from pdx_translator.models import LocalisationEntry, Slice


def prompt_items(messages) -> List[dict]:
    """Items sent for translation, decoded from the user prompt."""
    user_prompt = messages[-1]["content"]
    return json.loads(user_prompt.split("\n")[1])


def make_response(texts) -> str:
    return json.dumps(
        {"translations": [{"id": i, "text": t} for i, t in enumerate(texts)]},
        ensure_ascii=False,
    )


class EchoClient:
    """Answers every request by transforming the source texts."""

    def __init__(self, transform: Callable[[str], str] = lambda s: s):
        self.transform = transform
        self.calls = []

    async def send(self, messages, timeout):
        self.calls.append(messages)
        return make_response(self.transform(item["text"]) for item in prompt_items(messages))


class ScriptedClient:
    """Raises or returns the scripted outcomes in order, then echoes."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def send(self, messages, timeout):
        self.calls.append(messages)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            if callable(outcome):
                return outcome(prompt_items(messages))
            return outcome
        return make_response(item["text"] for item in prompt_items(messages))


class BlockingClient:
    """Echo client that holds each request open and tracks concurrency."""

    def __init__(self, delay: float = 0.01):
        self.delay = delay
        self.current = 0
        self.peak = 0
        self.calls = 0

    async def send(self, messages, timeout):
        self.calls += 1
        self.current += 1
        self.peak = max(self.peak, self.current)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.current -= 1
        return make_response(item["text"] for item in prompt_items(messages))


def make_entry(key: str, value: str = None, line_no: int = 0) -> LocalisationEntry:
    value = f"Text of {key}" if value is None else value
    return LocalisationEntry(
        key=key,
        value=value,
        version="0",
        line_no=line_no,
        prefix=f' {key}:0 "',
        suffix='"',
        line_end="\n",
    )


def make_slices(count: int, file_id: str = "file.yml", per_slice: int = 1) -> List[Slice]:
    slices = []
    for i in range(count):
        entries = tuple(make_entry(f"key_{i}_{j}") for j in range(per_slice))
        slices.append(Slice(file_id=file_id, index=i, entries=entries))
    return slices


SAMPLE_FILE = (
    "l_english:\n"
    " # Buildings\n"
    ' building_farm:0 "Farm"\n'
    ' building_farm_desc:0 "Produces £food£ food for the $EMPIRE$ war effort."\n'
    "\n"
    ' tech_warp_drive: "Warp Drive" # comment\n'
    ' tech_energy:1 "Energy §YWeapons§!"\n'
)


@pytest.fixture
def sample_text() -> str:
    return SAMPLE_FILE


@pytest.fixture
def task_dir(tmp_path):
    """A mod with one English file and a data dir holding one glossary."""
    source_dir = tmp_path / "mod" / "localisation" / "english" / "sub"
    source_dir.mkdir(parents=True)
    (source_dir / "l_english_test.yml").write_text(SAMPLE_FILE, encoding="utf-8-sig")

    glossary_dir = tmp_path / "data" / "glossary"
    glossary_dir.mkdir(parents=True)
    (glossary_dir / "stellaris.json").write_text(
        json.dumps({
            "energy": {"1": "Energy", "2": "能量"},
            "war": {"1": "War", "2": "战争"},
            "farm": {"1": "Farm", "3": "Granja"},
        }, ensure_ascii=False),
        encoding="utf-8",
    )
    return tmp_path
