from __future__ import annotations

import random
from typing import Sequence

FALLBACK_WORD_POOL: tuple[dict, ...] = (
    {
        "item_type": "vocab",
        "lemma": "itinerary",
        "meaning": "여행 일정표",
        "part_of_speech": "noun",
        "example_en": "I shared my itinerary with my family.",
        "example_translation": "나는 가족에게 내 여행 일정을 공유했다.",
    },
    {
        "item_type": "phrasal_verb",
        "lemma": "check in",
        "meaning": "체크인하다",
        "part_of_speech": "verb",
        "example_en": "We need to check in two hours early.",
        "example_translation": "우리는 두 시간 일찍 체크인해야 한다.",
    },
    {
        "item_type": "collocation",
        "lemma": "make a reservation",
        "meaning": "예약하다",
        "part_of_speech": "verb phrase",
        "example_en": "Let's make a reservation for dinner.",
        "example_translation": "저녁 식사 예약을 하자.",
    },
    {
        "item_type": "vocab",
        "lemma": "commute",
        "meaning": "통근하다",
        "part_of_speech": "verb",
        "example_en": "I commute to work by subway every day.",
        "example_translation": "나는 매일 지하철로 통근한다.",
    },
    {
        "item_type": "idiom",
        "lemma": "break the ice",
        "meaning": "분위기를 풀다",
        "part_of_speech": "idiom",
        "example_en": "She told a joke to break the ice.",
        "example_translation": "그녀는 분위기를 풀기 위해 농담을 했다.",
    },
    {
        "item_type": "vocab",
        "lemma": "accommodate",
        "meaning": "수용하다, 편의를 제공하다",
        "part_of_speech": "verb",
        "example_en": "The hotel can accommodate up to 200 guests.",
        "example_translation": "그 호텔은 최대 200명의 손님을 수용할 수 있다.",
    },
    {
        "item_type": "preposition",
        "lemma": "in terms of",
        "meaning": "~의 관점에서",
        "part_of_speech": "preposition",
        "example_en": "In terms of cost, this option is the best.",
        "example_translation": "비용 관점에서 이 옵션이 최고다.",
    },
    {
        "item_type": "vocab",
        "lemma": "deadline",
        "meaning": "마감 기한",
        "part_of_speech": "noun",
        "example_en": "The deadline for the report is next Friday.",
        "example_translation": "보고서 마감 기한은 다음 주 금요일이다.",
    },
    {
        "item_type": "phrasal_verb",
        "lemma": "look forward to",
        "meaning": "~을 기대하다",
        "part_of_speech": "verb",
        "example_en": "I look forward to meeting you.",
        "example_translation": "만나 뵙기를 기대합니다.",
    },
    {
        "item_type": "collocation",
        "lemma": "take notes",
        "meaning": "메모하다, 필기하다",
        "part_of_speech": "verb phrase",
        "example_en": "Please take notes during the meeting.",
        "example_translation": "회의 중에 메모해 주세요.",
    },
)


def pick_fallback_words(count: int, avoid: Sequence[str] = (), *, rng: random.Random | None = None) -> list[dict]:
    """Pick ``count`` random pool words, preferring ones not in ``avoid``.

    Avoided words only top up the selection when the rest of the pool runs short.
    """
    rng = rng or random.Random()
    avoid_set = {word.strip().lower() for word in avoid}
    fresh = [dict(word) for word in FALLBACK_WORD_POOL if word["lemma"].lower() not in avoid_set]
    stale = [dict(word) for word in FALLBACK_WORD_POOL if word["lemma"].lower() in avoid_set]
    rng.shuffle(fresh)
    rng.shuffle(stale)
    return (fresh + stale)[: max(0, int(count))]
