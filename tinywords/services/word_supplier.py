from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

import httpx
from loguru import logger

from tinywords.config import LLM_BASE_URL, LLM_MAX_RETRIES, LLM_MODEL, LLM_TIMEOUT_SECONDS
from tinywords.errors import UpstreamError
from tinywords.scheduler.day_plan import ITEM_TYPES
from tinywords.services.fallback_words import pick_fallback_words

PROMPT_VERSION = "tw-wordgen-v1"


@dataclass(frozen=True)
class SuppliedWord:
    lemma: str
    meaning: str
    item_type: str = "vocab"
    part_of_speech: str = ""
    example_en: str = ""
    example_translation: str = ""


@dataclass(frozen=True)
class WordRequest:
    count: int
    level: str
    focus: str
    known_words: list[str] = field(default_factory=list)
    avoid_words: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class WordBatch:
    items: list[SuppliedWord]
    source: str  # "ai" | "fallback"
    errors: list[str] = field(default_factory=list)


class WordSupplier:
    """Generates daily learning items through an OpenAI-compatible chat endpoint."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_retries: int = LLM_MAX_RETRIES,
    ) -> None:
        self.api_key = os.getenv("OPENAI_API_KEY")
        self.base_url = base_url or LLM_BASE_URL
        self.model = model or LLM_MODEL
        self.timeout = timeout or LLM_TIMEOUT_SECONDS
        self.max_retries = max(0, int(max_retries))

    def available(self) -> bool:
        return bool(self.api_key) and not str(self.api_key).startswith("sk-your-")

    def supply(self, request: WordRequest) -> WordBatch:
        """Return model-generated words, or the fallback pool when generation fails."""
        errors: list[str] = []
        if self.available():
            for attempt in range(self.max_retries + 1):
                try:
                    return WordBatch(items=self.generate(request), source="ai")
                except UpstreamError as exc:
                    errors.append(exc.message)
                    logger.warning(
                        "word generation failed (attempt {}/{}): {}",
                        attempt + 1,
                        self.max_retries + 1,
                        exc.message,
                    )
                except Exception as exc:
                    errors.append(f"unexpected word generation error: {exc!r}")
                    logger.exception("word generation crashed (attempt {}/{})", attempt + 1, self.max_retries + 1)
        else:
            errors.append("llm api key is not configured")

        logger.info("using fallback word pool for {} words", request.count)
        picked = pick_fallback_words(request.count, request.avoid_words)
        return WordBatch(items=[SuppliedWord(**word) for word in picked], source="fallback", errors=errors)

    def generate(self, request: WordRequest) -> list[SuppliedWord]:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": _system_prompt()},
                {"role": "user", "content": _user_prompt(request)},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.8,
        }
        try:
            data = self._chat_completion(payload, timeout=self.timeout)
        except (httpx.HTTPError, RuntimeError, ValueError) as exc:
            raise UpstreamError(f"word generation request failed: {exc}") from exc

        if not isinstance(data, dict):
            raise UpstreamError("word generation response is not an object")
        content = _extract_content(data)
        if not content:
            raise UpstreamError("empty word generation content")
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            raise UpstreamError("word generation returned invalid json") from exc

        problems = validate_generated_items(parsed, request)
        if problems:
            raise UpstreamError("word generation output rejected", details=[{"reason": p} for p in problems])
        return [_to_supplied_word(item) for item in parsed["items"]]

    def _chat_completion(self, payload: dict, *, timeout: float = 30) -> dict:
        if not self.api_key:
            raise RuntimeError("missing llm api key")

        url = self.base_url.rstrip("/") + "/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        with httpx.Client(timeout=timeout) as client:
            resp = client.post(url, headers=headers, json=payload)
            resp.raise_for_status()
            return resp.json()


def validate_generated_items(parsed: object, request: WordRequest) -> list[str]:
    if not isinstance(parsed, dict) or not isinstance(parsed.get("items"), list):
        return ["items must be an array"]

    meta = parsed.get("meta")
    if isinstance(meta, dict) and meta.get("error_code"):
        return [f"model returned error: {meta.get('error_code')}"]

    items = parsed["items"]
    errors: list[str] = []
    if len(items) != request.count:
        errors.append(f"expected {request.count} items, got {len(items)}")

    avoid = {word.lower() for word in request.avoid_words}
    seen: set[str] = set()
    for item in items:
        if not isinstance(item, dict):
            errors.append("item must be an object")
            continue
        lemma = str(item.get("lemma") or "").strip()
        if not lemma:
            errors.append("lemma is empty")
            continue
        if not str(item.get("meaning") or "").strip():
            errors.append(f"meaning is empty for {lemma!r}")
        if not str(item.get("example_en") or "").strip():
            errors.append(f"example_en is empty for {lemma!r}")
        item_type = item.get("item_type")
        if not isinstance(item_type, str) or item_type not in ITEM_TYPES:
            errors.append(f"invalid item_type {item.get('item_type')!r} for {lemma!r}")
        lowered = lemma.lower()
        if lowered in seen:
            errors.append(f"duplicate lemma {lemma!r}")
        if lowered in avoid:
            errors.append(f"lemma {lemma!r} is in avoid list")
        seen.add(lowered)
    return errors


def _to_supplied_word(item: dict) -> SuppliedWord:
    return SuppliedWord(
        lemma=str(item["lemma"]).strip(),
        meaning=str(item["meaning"]).strip(),
        item_type=str(item["item_type"]),
        part_of_speech=str(item.get("part_of_speech") or "").strip(),
        example_en=str(item.get("example_en") or "").strip(),
        example_translation=str(item.get("example_translation") or "").strip(),
    )


def _system_prompt() -> str:
    return (
        "You generate short daily vocabulary sets for adult learners of English. "
        "Pick practical words or phrases at the requested CEFR level. "
        "Never repeat avoided words. Keep examples natural and one sentence long. "
        "Return JSON only."
    )


def _user_prompt(request: WordRequest) -> str:
    known = ", ".join(request.known_words) if request.known_words else "(none yet)"
    avoid = ", ".join(request.avoid_words) if request.avoid_words else "(none)"
    return (
        f"level: {request.level}\n"
        f"learning_focus: {request.focus}\n"
        f"daily_target: {request.count}\n"
        f"known_words_hint: [{known}]\n"
        f"avoid_words: [{avoid}]\n\n"
        "Pick new words related to the known ones that form a small theme within the focus.\n"
        'Output schema: {"items": [{"item_type": "vocab|preposition|idiom|phrasal_verb|collocation", '
        '"lemma": "...", "meaning": "...", "part_of_speech": "...", "example_en": "...", '
        '"example_translation": "..."}], '
        f'"meta": {{"prompt_version": "{PROMPT_VERSION}"}}}}'
    )


def _extract_content(payload: dict) -> str:
    choices = payload.get("choices") or []
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content.strip()
    return ""
