"""
Session Persistence Orchestrator
================================

The write path for one closed conversation.

Steps:
1. Discard ineligible transcripts (no user or no assistant turn) - no side effects
2. Derive the outcome (candidate if compatible, else heuristic)
3. Gate the report candidate against the deterministic fallback
4. Append outcome, history entry and report
5. Weekly summary (usually a no-op)
6. Memory synthesis
7. Telemetry: session_saved and session_report_saved
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional
import logging

from coach_insights.analytics import AnalyticsEventName, AnalyticsEventStore
from coach_insights.extraction import SessionExtractor
from coach_insights.memory_engine import MemoryEngine
from coach_insights.outcome_deriver import TranscriptView, derive_outcome
from coach_insights.policy import DEFAULT_POLICY, InsightPolicy
from coach_insights.report_gate import build_report_card
from coach_insights.repository import InsightRepository
from coach_insights.schemas import (
    CoachType, HistoryMessage, SessionHistoryEntry, SessionOutcomeCard,
    SessionReportCard, WeeklySummaryCard, create_id, utc_now_iso,
)
from coach_insights.store import KeyValueStore
from coach_insights.weekly_summary import WeeklySummarizer


@dataclass
class SessionCommit:
    """Everything one committed session produced."""
    outcome: SessionOutcomeCard
    history: SessionHistoryEntry
    report: SessionReportCard
    weekly_summary: Optional[WeeklySummaryCard] = None
    used_outcome_candidate: bool = False


class SessionPersistenceOrchestrator:

    def __init__(
        self,
        store: KeyValueStore,
        analytics: Optional[AnalyticsEventStore] = None,
        policy: InsightPolicy = DEFAULT_POLICY,
        summarizer: Optional[WeeklySummarizer] = None,
        memory: Optional[MemoryEngine] = None,
    ):
        self.store = store
        self.policy = policy
        self.analytics = analytics if analytics is not None else AnalyticsEventStore(store, policy)
        self.repository = InsightRepository(store, self.analytics)
        self.summarizer = summarizer or WeeklySummarizer(store, policy)
        self.memory = memory or MemoryEngine(store, policy)

    def persist_session(
        self,
        coach: CoachType,
        started_at: str,
        messages: List[Any],
        outcome_candidate: Any = None,
        report_candidate: Any = None,
        now: Optional[datetime] = None,
    ) -> Optional[SessionCommit]:
        """
        Commit one closed conversation. Returns None when the transcript is
        not eligible. Calling twice for the same conversation creates two
        sessions; callers guard against that (see SessionCloser).
        """
        coach = CoachType(coach)
        transcript = TranscriptView.from_messages(messages)
        if not transcript.is_eligible:
            logging.info(f"Discarding {coach.value} session: transcript has no complete exchange")
            return None

        session_id = create_id("session")
        outcome_data, used_candidate = derive_outcome(coach, transcript, outcome_candidate, self.policy)

        outcome_card = SessionOutcomeCard(
            id=create_id("outcome"),
            coach=coach,
            created_at=utc_now_iso(now),
            source_session_id=session_id,
            data=outcome_data,
        )
        history_entry = SessionHistoryEntry(
            id=session_id,
            coach=coach,
            started_at=started_at,
            ended_at=utc_now_iso(now),
            outcome_id=outcome_card.id,
            messages=[HistoryMessage(role=m.role, content=m.content) for m in transcript.messages],
        )
        report_card = build_report_card(
            outcome_card, report_candidate, transcript.latest_user, self.policy
        )

        outcomes = self.repository.append_session(outcome_card, history_entry, report_card)

        weekly = self.summarizer.maybe_create(outcomes, now)
        self.memory.sync_from_outcome(outcome_card, outcomes, now)

        self.analytics.track_event(AnalyticsEventName.SESSION_SAVED, {
            "coach": coach.value,
            "outcome_kind": outcome_data.kind,
            "used_outcome_override": used_candidate,
        })
        self.analytics.track_event(AnalyticsEventName.SESSION_REPORT_SAVED, {
            "coach": coach.value,
            "outcome_kind": outcome_data.kind,
            "report_id": report_card.id,
            "report_source": report_card.source.value,
            "report_confidence": report_card.confidence,
            "report_quality_status": report_card.quality_status.value,
        })

        logging.info(
            f"Committed {coach.value} session {session_id}: outcome={outcome_data.kind}, "
            f"report={report_card.quality_status.value}, weekly={'yes' if weekly else 'no'}"
        )
        return SessionCommit(
            outcome=outcome_card,
            history=history_entry,
            report=report_card,
            weekly_summary=weekly,
            used_outcome_candidate=used_candidate,
        )


class SessionCloser:
    """
    One-shot guard around the orchestrator for a single conversation.
    The first close extracts candidates (when an extractor is given) and
    persists; later closes are blocked and only recorded.
    """

    def __init__(
        self,
        orchestrator: SessionPersistenceOrchestrator,
        coach: CoachType,
        started_at: Optional[str] = None,
        extractor: Optional[SessionExtractor] = None,
    ):
        self.orchestrator = orchestrator
        self.coach = CoachType(coach)
        self.started_at = started_at or utc_now_iso()
        self.extractor = extractor
        self.closed = False

    def close(self, messages: List[Any], now: Optional[datetime] = None) -> Optional[SessionCommit]:
        analytics = self.orchestrator.analytics

        if self.closed:
            analytics.track_event(AnalyticsEventName.SESSION_CLOSE_BLOCKED, {
                "coach": self.coach.value,
                "reason": "already_closed",
            })
            return None
        self.closed = True

        transcript = TranscriptView.from_messages(messages)
        analytics.track_event(AnalyticsEventName.SESSION_CLOSED, {
            "coach": self.coach.value,
            "message_count": len(transcript.messages),
            "eligible": transcript.is_eligible,
        })
        if not transcript.is_eligible:
            return self.orchestrator.persist_session(self.coach, self.started_at, messages, now=now)

        outcome_candidate = None
        report_candidate = None
        if self.extractor:
            outcome_candidate = self.extractor.extract_outcome(self.coach, transcript.messages)
            report_candidate = self.extractor.extract_report(self.coach, transcript.messages, outcome_candidate)

        return self.orchestrator.persist_session(
            self.coach,
            self.started_at,
            messages,
            outcome_candidate=outcome_candidate,
            report_candidate=report_candidate,
            now=now,
        )
