"""Prompt building and response parsing for slice translation."""

from __future__ import annotations

import json
import re
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .config import PROMPT_TEMPLATE_FILE, data_dirs
from .errors import RequestError, RequestErrorKind
from .glossary import GlossaryIndex, find_matching_terms, glossary_to_csv
from .llm_client import ChatClient
from .models import Slice, TranslationRequest
from .text_utils import clean_translated_text, validate_translation

logger = logging.getLogger(__name__)

NO_GLOSSARY_TEXT = "(no relevant terms)"

DEFAULT_TEMPLATE = """You are a professional translator of Paradox game mods. Translate {{source_lang}} to {{target_lang}}.

## Rules:
1. Output valid JSON: {"translations": [{"id": 0, "text": "..."}, ...]}
2. Keep the same number of items as input, one per id
3. Keep special markers unchanged: £icon£, $variable$, §Ycolor§!, [Scope.GetName]
4. Keep escape sequences such as \\n unchanged
5. Use the glossary terms exactly when provided

## Glossary (CSV):
{{glossary_csv}}"""


def load_template(search_dirs: Optional[Sequence[Path]] = None) -> str:
    """Load ``prompts/translate_system.txt`` from the data dirs, or the built-in template."""
    for base in (search_dirs if search_dirs is not None else data_dirs()):
        path = base / PROMPT_TEMPLATE_FILE
        if path.is_file():
            logger.debug(f"Using prompt template {path}")
            return path.read_text(encoding="utf-8")
    return DEFAULT_TEMPLATE


def build_request(
    slice_: Slice,
    index: GlossaryIndex,
    source_lang: str,
    target_lang: str,
) -> TranslationRequest:
    """Attach the glossary subset found in the slice's source text."""
    matched = find_matching_terms(slice_.source_text, index, source_lang, target_lang)
    return TranslationRequest(
        slice=slice_,
        glossary=tuple(matched),
        source_lang=source_lang,
        target_lang=target_lang,
    )


def build_prompt(request: TranslationRequest, template: str = DEFAULT_TEMPLATE) -> tuple[str, str]:
    """
    Build (system, user) prompts for a request.

    Pure function of its inputs; nothing here touches the network.
    """
    if request.glossary:
        glossary_csv = glossary_to_csv(request.glossary, request.source_lang, request.target_lang)
    else:
        glossary_csv = NO_GLOSSARY_TEXT

    system_prompt = (
        template
        .replace("{{source_lang}}", request.source_lang)
        .replace("{{target_lang}}", request.target_lang)
        .replace("{{glossary_csv}}", glossary_csv)
    )

    items = [
        {"id": i, "key": entry.key, "text": entry.value}
        for i, entry in enumerate(request.slice.entries)
    ]
    user_prompt = f"""## Translate:
{json.dumps(items, ensure_ascii=False)}

Output JSON only:"""

    return system_prompt, user_prompt


def parse_translation_response(json_str: str, expected_count: int) -> List[str]:
    """
    Parse the JSON response of a translation request.

    Raises:
        RequestError: MALFORMED if the response is not valid JSON or does not
            contain exactly one text for every id ``0..expected_count-1``
    """
    if not json_str:
        raise RequestError(RequestErrorKind.MALFORMED, "Empty response")

    # Strip a possible markdown code fence
    clean = json_str.strip()
    clean = re.sub(r'^```(?:json)?\s*', '', clean)
    clean = re.sub(r'\s*```$', '', clean)

    try:
        data = json.loads(clean)
    except json.JSONDecodeError as e:
        logger.debug(f"Raw response: {json_str[:200]}...")
        raise RequestError(RequestErrorKind.MALFORMED, f"JSON parse failed: {e}") from e

    translations = data.get("translations") if isinstance(data, dict) else None
    if not isinstance(translations, list):
        raise RequestError(RequestErrorKind.MALFORMED, "'translations' is not a list")

    if len(translations) != expected_count:
        raise RequestError(
            RequestErrorKind.MALFORMED,
            f"Entry count mismatch: expected {expected_count}, got {len(translations)}",
        )

    translated_map: Dict[int, str] = {}
    for item in translations:
        if not isinstance(item, dict):
            raise RequestError(RequestErrorKind.MALFORMED, f"Invalid item in response: {item!r}")
        item_id = item.get("id")
        text = item.get("text")
        # bool is an int subclass; "id": true is not an id
        if type(item_id) is not int or not 0 <= item_id < expected_count or not isinstance(text, str):
            raise RequestError(RequestErrorKind.MALFORMED, f"Invalid item in response: {item!r}")
        if item_id in translated_map:
            raise RequestError(RequestErrorKind.MALFORMED, f"Duplicate id {item_id} in response")
        translated_map[item_id] = text

    return [translated_map[i] for i in range(expected_count)]


async def translate_slice(
    client: ChatClient,
    request: TranslationRequest,
    template: str,
    timeout: float,
) -> List[str]:
    """
    Send one translation attempt for a slice.

    Returns:
        One cleaned translation per slice entry, in entry order

    Raises:
        RequestError: retryable failure of this attempt
        AuthError: the API rejected the credentials
    """
    system_prompt, user_prompt = build_prompt(request, template)
    messages: List[Dict[str, Any]] = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]

    response = await client.send(messages, timeout)
    texts = parse_translation_response(response, len(request.slice.entries))
    texts = [clean_translated_text(t) for t in texts]

    for entry, text in zip(request.slice.entries, texts):
        for problem in validate_translation(entry.value, text):
            logger.warning(f"Found issue in {request.slice.file_id} '{entry.key}': {problem}")

    return texts
