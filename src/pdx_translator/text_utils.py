"""Text processing utilities."""

from __future__ import annotations

import math
import re
from typing import List


# Special formatting markers of Paradox localisation text
ICON_PATTERN = re.compile(r"£[^£]+£")
VARIABLE_PATTERN = re.compile(r"\$[^$]+\$")
COLOR_PATTERN = re.compile(r"§[^§]+§")

_MARKER_PATTERNS = (
    ("Icon", ICON_PATTERN),
    ("Variable", VARIABLE_PATTERN),
    ("Color", COLOR_PATTERN),
)

_CJK_RANGES = (
    (0x4E00, 0x9FFF),
    (0x3400, 0x4DBF),
    (0x20000, 0x2A6DF),
    (0x2A700, 0x2B73F),
    (0x2B740, 0x2B81F),
    (0x2B820, 0x2CEAF),
    (0xF900, 0xFAFF),
    (0x2F800, 0x2FA1F),
)


def is_cjk_character(char: str) -> bool:
    code = ord(char)
    return any(lo <= code <= hi for lo, hi in _CJK_RANGES)


def estimate_tokens(text: str) -> int:
    """
    Rough token estimate for mixed CJK/latin text.

    Latin text averages ~4 characters per token; CJK characters are
    counted at 1.5 tokens each.
    """
    if not text:
        return 0

    cjk = sum(1 for c in text if is_cjk_character(c))
    if not cjk:
        return math.ceil(len(text) / 4)
    other = len(text) - cjk
    return math.ceil(cjk * 1.5 + other * 0.25)


def extract_markers(text: str) -> List[str]:
    """All icon, variable and color markers in order of kind."""
    markers: List[str] = []
    for _, pattern in _MARKER_PATTERNS:
        markers.extend(pattern.findall(text))
    return markers


def check_markers(original: str, translated: str) -> List[str]:
    """
    Compare special markers between source and translation.

    Returns:
        Human readable problems, empty if all markers match
    """
    problems: List[str] = []
    for name, pattern in _MARKER_PATTERNS:
        before = pattern.findall(original)
        after = pattern.findall(translated)
        if before != after:
            problems.append(f"{name} markers mismatch. Original: {before}, Translated: {after}")
    return problems


def clean_translated_text(text: str) -> str:
    """
    Normalize a translated value so it fits on one localisation line.

    Real line breaks become the literal ``\\n`` escape used by the game.
    """
    if not text or not isinstance(text, str):
        return ""

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return text.replace("\n", "\\n")


def validate_translation(original: str, translated: str) -> List[str]:
    """
    Validate a single translated value.

    Problems are reported, not fatal: the translation is still used.
    """
    problems: List[str] = []

    if original.strip() and not translated.strip():
        problems.append("Empty translation")

    problems.extend(check_markers(original, translated))
    return problems
