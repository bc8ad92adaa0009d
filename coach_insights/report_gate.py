"""
Report Quality Gate
===================

Guardrail between the completion service and the reports the user sees.
An AI-proposed report is only kept if it is confident, says something
specific in every field and is not repetitive. Otherwise a deterministic
report built from the outcome is used.

Decision rule (all must hold to accept):
- confidence >= policy.min_report_confidence
- summary, pattern and nextCheckInPrompt each have distinct meaning
- the three fields together are not low-diversity
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple

from coach_insights.policy import DEFAULT_POLICY, InsightPolicy
from coach_insights.schemas import (
    CoachType, OutcomeKind, ReportCandidate, ReportQualityStatus, ReportSource,
    SessionOutcomeCard, SessionReportCard, create_id, outcome_kind,
    parse_report_candidate, utc_now_iso,
)
from coach_insights.text_heuristics import has_distinct_meaning, has_low_diversity, safe_sentence


COACH_DESCRIPTOR = {
    CoachType.FOCUS: "focus and execution",
    CoachType.DECISION: "decision clarity",
    CoachType.REFLECTION: "reflection and meaning",
}


@dataclass
class ReportDraft:
    """Report body before it is bound to a session."""
    summary: str
    pattern: str
    next_check_in_prompt: str
    confidence: float
    source: ReportSource


def build_fallback_report(
    outcome_card: SessionOutcomeCard,
    latest_user_message: str = "",
    policy: InsightPolicy = DEFAULT_POLICY,
) -> ReportDraft:
    """Templated report that references the outcome's own sentences."""
    data = outcome_card.data
    kind = outcome_kind(data)
    cap = policy.max_sentence_chars

    if kind == OutcomeKind.FOCUS:
        summary = f"You narrowed the session to one clear priority: {data.priority}"
        pattern = f"Pattern signal: you are using coaching for {COACH_DESCRIPTOR[outcome_card.coach]}."
        next_prompt = f"When you check in next, report what happened after this first step: {data.first_step}"
    elif kind == OutcomeKind.DECISION:
        summary = f"You committed to a direction: {data.decision}"
        pattern = "Pattern signal: you are naming tradeoffs instead of staying stuck in options."
        next_prompt = f"At your next check-in, reflect on how this tradeoff felt in practice: {data.tradeoff_accepted}"
    else:
        summary = f"You captured a recurring insight: {data.insight}"
        pattern = "Pattern signal: you are slowing down to notice what repeats beneath the surface."
        next_prompt = f"Carry this into your next check-in: {data.question_to_carry}"

    return ReportDraft(
        summary=safe_sentence(summary, f"You completed a {outcome_card.coach.value} session.", cap),
        pattern=safe_sentence(pattern, "Pattern signal captured from this session.", cap),
        next_check_in_prompt=safe_sentence(
            next_prompt or latest_user_message, "What feels most important to revisit next?", cap
        ),
        confidence=policy.fallback_report_confidence,
        source=ReportSource.FALLBACK,
    )


def passes_quality_gate(candidate: ReportCandidate, policy: InsightPolicy = DEFAULT_POLICY) -> bool:
    if candidate.confidence < policy.min_report_confidence:
        return False

    fields = (candidate.summary, candidate.pattern, candidate.next_check_in_prompt)
    if not all(has_distinct_meaning(f, policy) for f in fields):
        return False

    return not has_low_diversity(" ".join(fields), policy)


def select_report(
    candidate: Any,
    fallback: ReportDraft,
    policy: InsightPolicy = DEFAULT_POLICY,
) -> Tuple[ReportDraft, ReportQualityStatus]:
    parsed: Optional[ReportCandidate] = parse_report_candidate(candidate)

    if parsed is None:
        status = ReportQualityStatus.FALLBACK_ONLY if candidate is None else ReportQualityStatus.REJECTED_AI_FALLBACK
        return fallback, status

    if not passes_quality_gate(parsed, policy):
        return fallback, ReportQualityStatus.REJECTED_AI_FALLBACK

    return ReportDraft(
        summary=parsed.summary,
        pattern=parsed.pattern,
        next_check_in_prompt=parsed.next_check_in_prompt,
        confidence=parsed.confidence,
        source=ReportSource.AI,
    ), ReportQualityStatus.ACCEPTED_AI


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, round(float(value), 2)))


def build_report_card(
    outcome_card: SessionOutcomeCard,
    candidate: Any = None,
    latest_user_message: str = "",
    policy: InsightPolicy = DEFAULT_POLICY,
) -> SessionReportCard:
    """Gate the candidate and bind the chosen report to the outcome's session."""
    fallback = build_fallback_report(outcome_card, latest_user_message, policy)
    selected, status = select_report(candidate, fallback, policy)
    cap = policy.max_sentence_chars

    return SessionReportCard(
        id=create_id("report"),
        created_at=utc_now_iso(),
        coach=outcome_card.coach,
        source_session_id=outcome_card.source_session_id,
        source_outcome_id=outcome_card.id,
        summary=safe_sentence(selected.summary, fallback.summary, cap),
        pattern=safe_sentence(selected.pattern, fallback.pattern, cap),
        next_check_in_prompt=safe_sentence(selected.next_check_in_prompt, fallback.next_check_in_prompt, cap),
        confidence=clamp_confidence(selected.confidence),
        source=selected.source,
        quality_status=status,
    )
