"""
Text heuristics shared by the outcome deriver, report gate and summarizers.
Pure functions, no state.
"""

import re
from typing import List, Optional

from coach_insights.policy import DEFAULT_POLICY, InsightPolicy

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")
WHITESPACE = re.compile(r"\s+")
NON_ALNUM = re.compile(r"[^a-z0-9\s]")
TERMINAL_PUNCTUATION = (".", "!", "?")


def collapse_whitespace(value: str) -> str:
    return WHITESPACE.sub(" ", value or "").strip()


def split_sentences(value: str) -> List[str]:
    """Split on ./!/? followed by whitespace, dropping empty pieces."""
    return [s.strip() for s in SENTENCE_BOUNDARY.split(value or "") if s.strip()]


def safe_sentence(value: Optional[str], fallback: str, max_chars: int = DEFAULT_POLICY.max_sentence_chars) -> str:
    """
    Normalize a sentence slot: collapse whitespace, cap length and make sure
    it ends with terminal punctuation. Empty input yields `fallback`.
    """
    normalized = collapse_whitespace(value or "")
    if not normalized:
        normalized = collapse_whitespace(fallback)
    if not normalized:
        return ""

    capped = normalized[:max_chars]
    if capped.endswith(TERMINAL_PUNCTUATION):
        return capped
    return f"{capped[:max_chars - 1].rstrip()}."


def normalize_label(value: str, max_chars: int = DEFAULT_POLICY.max_memory_label_chars) -> str:
    return collapse_whitespace(value)[:max_chars]


def word_tokens(value: str) -> List[str]:
    """Lowercase alphanumeric runs, punctuation replaced by spaces."""
    return [t for t in NON_ALNUM.sub(" ", (value or "").lower()).split() if t]


def has_distinct_meaning(value: str, policy: InsightPolicy = DEFAULT_POLICY) -> bool:
    normalized = (value or "").strip().lower()
    if len(normalized) < policy.min_distinct_chars:
        return False
    return not any(phrase in normalized for phrase in policy.filler_phrases)


def token_diversity(value: str, policy: InsightPolicy = DEFAULT_POLICY) -> Optional[float]:
    """
    Unique / total token ratio. None when there are too few tokens to judge.
    """
    tokens = [t for t in word_tokens(value) if len(t) >= policy.min_diversity_token_len]
    if len(tokens) < policy.min_diversity_tokens:
        return None
    return len(set(tokens)) / len(tokens)


def has_low_diversity(value: str, policy: InsightPolicy = DEFAULT_POLICY) -> bool:
    diversity = token_diversity(value, policy)
    return diversity is None or diversity < policy.min_token_diversity


def theme_tokens(value: str, policy: InsightPolicy = DEFAULT_POLICY) -> List[str]:
    return [
        t for t in word_tokens(value)
        if len(t) >= policy.theme_min_token_len and t not in policy.theme_stop_words
    ]
