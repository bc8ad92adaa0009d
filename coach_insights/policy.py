"""
Tunable thresholds for the insight pipeline.

Every heuristic cut-off lives here so gates and summarizers can be tested
against alternative policies without touching their algorithms.
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class InsightPolicy:
    # Sentence normalization
    max_sentence_chars: int = 180
    max_memory_label_chars: int = 160

    # Report quality gate
    min_report_confidence: float = 0.55
    min_distinct_chars: int = 24
    # Coupled to the wording of the fallback report templates in report_gate.py
    filler_phrases: Tuple[str, ...] = ("pattern signal", "you completed a")
    min_token_diversity: float = 0.55
    min_diversity_tokens: int = 8
    min_diversity_token_len: int = 3
    fallback_report_confidence: float = 0.4

    # Weekly summary
    weekly_min_outcomes: int = 3
    theme_min_token_len: int = 4
    theme_min_count: int = 2
    theme_limit: int = 2
    theme_stop_words: Tuple[str, ...] = (
        "that", "with", "from", "this", "your", "have", "what", "into", "after",
    )
    sequence_length: int = 4

    # Memory disclosure stages
    memory_stage_two_at: int = 5
    memory_stage_three_at: int = 9
    memory_max_items: int = 48
    focus_trajectory_min_open: int = 3
    decision_trajectory_min_prior: int = 2
    reflection_trajectory_min_prior: int = 2

    # Event log caps
    client_event_cap: int = 400
    server_event_cap: int = 2000


DEFAULT_POLICY = InsightPolicy()
