"""
Outcome Deriver
===============

Turns a closed conversation into one typed outcome for the coach that ran it.

Priority:
1. Externally supplied candidate, if its kind matches the coach
2. Local heuristic: sentences of the latest assistant reply
3. Fixed per-coach default sentences

Always returns a value; the defaults make the function total.
"""

from dataclasses import dataclass
from typing import List, Any
import logging

from coach_insights.policy import DEFAULT_POLICY, InsightPolicy
from coach_insights.schemas import (
    COACH_OUTCOME_KIND, ChatMessage, ChatRole, CoachType, OutcomeKind,
    FocusOutcome, DecisionOutcome, ReflectionOutcome, outcome_kind,
    parse_outcome_candidate,
)
from coach_insights.text_heuristics import safe_sentence, split_sentences


# (primary default, secondary default) per coach
DEFAULT_SENTENCES = {
    CoachType.FOCUS: (
        "Choose one concrete priority for today.",
        "Take a single step in the next 20 minutes.",
    ),
    CoachType.DECISION: (
        "Commit to one direction.",
        "Accept one meaningful downside of this choice.",
    ),
    CoachType.REFLECTION: (
        "Name the key thing that keeps recurring.",
        "What deserves a slower look this week?",
    ),
}


@dataclass
class TranscriptView:
    """The conversational part of a transcript, opening and error turns removed."""
    messages: List[ChatMessage]

    @classmethod
    def from_messages(cls, messages: List[Any]) -> "TranscriptView":
        parsed = [m if isinstance(m, ChatMessage) else ChatMessage.model_validate(m) for m in messages]
        return cls([m for m in parsed if not m.is_opening and not m.is_error])

    @property
    def user_messages(self) -> List[ChatMessage]:
        return [m for m in self.messages if m.role == ChatRole.USER]

    @property
    def assistant_messages(self) -> List[ChatMessage]:
        return [m for m in self.messages if m.role == ChatRole.ASSISTANT]

    @property
    def is_eligible(self) -> bool:
        return bool(self.user_messages) and bool(self.assistant_messages)

    @property
    def latest_user(self) -> str:
        users = self.user_messages
        return users[-1].content if users else ""

    @property
    def latest_assistant(self) -> str:
        assistants = self.assistant_messages
        return assistants[-1].content if assistants else ""


def is_outcome_compatible(coach: CoachType, outcome) -> bool:
    return outcome_kind(outcome) == COACH_OUTCOME_KIND[CoachType(coach)]


def derive_fallback_outcome(
    coach: CoachType,
    latest_user_message: str,
    latest_assistant_message: str,
    policy: InsightPolicy = DEFAULT_POLICY,
):
    """
    Heuristic outcome from the latest exchange.

    The primary slot takes the first assistant sentence, then the latest user
    message. The secondary slot takes the second assistant sentence, then the
    coach default.
    """
    coach = CoachType(coach)
    sentences = split_sentences(latest_assistant_message)
    primary_default, secondary_default = DEFAULT_SENTENCES[coach]
    cap = policy.max_sentence_chars

    primary = safe_sentence(
        sentences[0] if sentences else latest_user_message, primary_default, cap
    )
    secondary = safe_sentence(
        sentences[1] if len(sentences) > 1 else "", secondary_default, cap
    )

    kind = COACH_OUTCOME_KIND[coach]
    if kind == OutcomeKind.FOCUS:
        return FocusOutcome(priority=primary, first_step=secondary, is_completed=False)
    if kind == OutcomeKind.DECISION:
        return DecisionOutcome(decision=primary, tradeoff_accepted=secondary)
    return ReflectionOutcome(insight=primary, question_to_carry=secondary)


def normalize_outcome(coach: CoachType, outcome, policy: InsightPolicy = DEFAULT_POLICY):
    """Run every sentence slot of a compatible outcome through the normalizer."""
    primary_default, secondary_default = DEFAULT_SENTENCES[CoachType(coach)]
    cap = policy.max_sentence_chars

    if isinstance(outcome, FocusOutcome):
        return FocusOutcome(
            priority=safe_sentence(outcome.priority, primary_default, cap),
            first_step=safe_sentence(outcome.first_step, secondary_default, cap),
            is_completed=outcome.is_completed,
        )
    if isinstance(outcome, DecisionOutcome):
        return DecisionOutcome(
            decision=safe_sentence(outcome.decision, primary_default, cap),
            tradeoff_accepted=safe_sentence(outcome.tradeoff_accepted, secondary_default, cap),
        )
    return ReflectionOutcome(
        insight=safe_sentence(outcome.insight, primary_default, cap),
        question_to_carry=safe_sentence(outcome.question_to_carry, secondary_default, cap),
    )


def derive_outcome(
    coach: CoachType,
    transcript: TranscriptView,
    candidate: Any = None,
    policy: InsightPolicy = DEFAULT_POLICY,
):
    """
    Returns (outcome, used_candidate).
    """
    coach = CoachType(coach)
    parsed = parse_outcome_candidate(candidate)

    if parsed is not None and is_outcome_compatible(coach, parsed):
        return normalize_outcome(coach, parsed, policy), True

    if parsed is not None:
        logging.warning(
            f"Outcome candidate kind '{parsed.kind}' does not match {coach.value}, using fallback"
        )

    outcome = derive_fallback_outcome(
        coach, transcript.latest_user, transcript.latest_assistant, policy
    )
    return outcome, False
