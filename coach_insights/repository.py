"""
Coach Insights Repository Layer
===============================

Typed access to the persisted collections of the session pipeline.
Every collection is one key in the key-value store; reads tolerate
corruption (malformed collections read as empty, malformed records are
skipped) and writes go through the store's per-key update.
"""

from typing import Callable, List, Optional, Type
import logging

from pydantic import BaseModel

from coach_insights.analytics import AnalyticsEventName, AnalyticsEventStore
from coach_insights.schemas import (
    FocusOutcome, ReportFeedback, ReportQualityStatus, ReportSource,
    SessionHistoryEntry, SessionOutcomeCard, SessionReportCard, TimelineItem,
    WeeklySummaryCard, iso_sort_key, utc_now_iso,
)
from coach_insights.store import KeyValueStore, dump_json_array, read_json_array
from coach_insights.text_heuristics import safe_sentence
from coach_insights.weekly_summary import WEEKLY_SUMMARIES_KEY

OUTCOMES_KEY = "coach.outcomes"
HISTORY_KEY = "coach.sessionHistory"
SESSION_REPORTS_KEY = "coach.sessionReports"


class InsightRepository:
    """
    Repository for outcomes, session history, reports and weekly summaries.
    Lifecycle changes emit telemetry when an analytics store is attached.
    """

    def __init__(self, store: KeyValueStore, analytics: Optional[AnalyticsEventStore] = None):
        self.store = store
        self.analytics = analytics

    def _track(self, name: AnalyticsEventName, payload: dict):
        if self.analytics:
            self.analytics.track_event(name, payload)

    # ==========================================================================
    # DECODING
    # ==========================================================================

    def _decode(self, raw: Optional[str], key: str, model: Type[BaseModel]) -> list:
        records = []
        for entry in read_json_array(raw, key):
            try:
                records.append(model.model_validate(entry))
            except ValueError as e:
                logging.warning(f"Skipping malformed record in {key}: {e}")
        return records

    def _load(self, key: str, model: Type[BaseModel]) -> list:
        return self._decode(self.store.get(key), key, model)

    def _prepend(self, key: str, model: Type[BaseModel], record: BaseModel):
        def apply(raw: Optional[str]) -> str:
            existing = self._decode(raw, key, model)
            return dump_json_array([r.to_json_dict() for r in [record] + existing])

        self.store.update(key, apply)

    def _rewrite(self, key: str, model: Type[BaseModel], mutator: Callable[[list], list]) -> list:
        result: List[list] = []

        def apply(raw: Optional[str]) -> str:
            records = mutator(self._decode(raw, key, model))
            result.append(records)
            return dump_json_array([r.to_json_dict() for r in records])

        self.store.update(key, apply)
        return result[0]

    # ==========================================================================
    # READS (newest first)
    # ==========================================================================

    def get_outcome_cards(self) -> List[SessionOutcomeCard]:
        cards = self._load(OUTCOMES_KEY, SessionOutcomeCard)
        return sorted(cards, key=lambda c: iso_sort_key(c.created_at), reverse=True)

    def get_session_history(self) -> List[SessionHistoryEntry]:
        entries = self._load(HISTORY_KEY, SessionHistoryEntry)
        return sorted(entries, key=lambda e: iso_sort_key(e.ended_at), reverse=True)

    def get_session_reports(self) -> List[SessionReportCard]:
        reports = []
        for report in self._load(SESSION_REPORTS_KEY, SessionReportCard):
            if report.quality_status is None:
                # Records written before quality gating existed
                status = (
                    ReportQualityStatus.ACCEPTED_AI if report.source == ReportSource.AI
                    else ReportQualityStatus.FALLBACK_ONLY
                )
                report = report.model_copy(update={"quality_status": status})
            reports.append(report)
        return sorted(reports, key=lambda r: iso_sort_key(r.created_at), reverse=True)

    def get_weekly_summaries(self) -> List[WeeklySummaryCard]:
        summaries = self._load(WEEKLY_SUMMARIES_KEY, WeeklySummaryCard)
        return sorted(summaries, key=lambda s: iso_sort_key(s.created_at), reverse=True)

    def get_timeline_items(self) -> List[TimelineItem]:
        items = [
            TimelineItem(id=f"outcome-{o.id}", type="outcome", created_at=o.created_at, outcome=o)
            for o in self.get_outcome_cards() if not o.archived_at
        ]
        items += [
            TimelineItem(id=f"weekly-{s.id}", type="weekly-summary", created_at=s.created_at, summary=s)
            for s in self.get_weekly_summaries()
        ]
        items += [
            TimelineItem(id=f"report-{r.id}", type="session-report", created_at=r.created_at, report=r)
            for r in self.get_session_reports()
        ]
        return sorted(items, key=lambda i: iso_sort_key(i.created_at), reverse=True)

    # ==========================================================================
    # SESSION COMMIT
    # ==========================================================================

    def append_session(
        self,
        outcome: SessionOutcomeCard,
        history: SessionHistoryEntry,
        report: SessionReportCard,
    ) -> List[SessionOutcomeCard]:
        """Append the three per-session records; returns the updated outcome set."""
        self._prepend(OUTCOMES_KEY, SessionOutcomeCard, outcome)
        self._prepend(HISTORY_KEY, SessionHistoryEntry, history)
        self._prepend(SESSION_REPORTS_KEY, SessionReportCard, report)
        return self.get_outcome_cards()

    # ==========================================================================
    # OUTCOME LIFECYCLE
    # ==========================================================================

    def update_outcome_card(
        self, outcome_id: str, updater: Callable[[SessionOutcomeCard], SessionOutcomeCard]
    ) -> Optional[SessionOutcomeCard]:
        cards = self._rewrite(
            OUTCOMES_KEY, SessionOutcomeCard,
            lambda cards: [updater(c) if c.id == outcome_id else c for c in cards],
        )
        updated = next((c for c in cards if c.id == outcome_id), None)
        if updated is None:
            return None

        self._track(AnalyticsEventName.OUTCOME_UPDATED, {
            "outcome_kind": updated.data.kind,
            "coach": updated.coach.value,
        })
        if isinstance(updated.data, FocusOutcome) and updated.data.is_completed:
            self._track(AnalyticsEventName.OUTCOME_FOCUS_COMPLETED, {"outcome_id": updated.id})
        return updated

    def set_focus_completed(self, outcome_id: str, completed: bool = True) -> Optional[SessionOutcomeCard]:
        def mark(card: SessionOutcomeCard) -> SessionOutcomeCard:
            if not isinstance(card.data, FocusOutcome):
                return card
            return card.model_copy(update={"data": card.data.model_copy(update={"is_completed": completed})})

        return self.update_outcome_card(outcome_id, mark)

    def edit_outcome_text(self, outcome_id: str, **fields: str) -> Optional[SessionOutcomeCard]:
        """
        User edit of sentence slots, e.g. edit_outcome_text(id, priority="...").
        Unknown or empty fields are ignored; edited text is normalized.
        """
        def edit(card: SessionOutcomeCard) -> SessionOutcomeCard:
            changes = {}
            for name, value in fields.items():
                current = getattr(card.data, name, None)
                if name == "kind" or not isinstance(current, str) or not (value or "").strip():
                    continue
                changes[name] = safe_sentence(value, current)
            if not changes:
                return card
            return card.model_copy(update={"data": card.data.model_copy(update=changes)})

        return self.update_outcome_card(outcome_id, edit)

    def archive_outcome_card(self, outcome_id: str) -> Optional[SessionOutcomeCard]:
        archived_at = utc_now_iso()
        updated = self.update_outcome_card(
            outcome_id, lambda c: c.model_copy(update={"archived_at": archived_at})
        )
        if updated:
            self._track(AnalyticsEventName.OUTCOME_ARCHIVED, {"outcome_id": outcome_id})
        return updated

    def delete_outcome_card(self, outcome_id: str) -> bool:
        deleted: List[SessionOutcomeCard] = []

        def drop(cards: list) -> list:
            deleted.extend(c for c in cards if c.id == outcome_id)
            return [c for c in cards if c.id != outcome_id]

        self._rewrite(OUTCOMES_KEY, SessionOutcomeCard, drop)
        self._track(AnalyticsEventName.OUTCOME_DELETED, {
            "outcome_id": outcome_id,
            "outcome_kind": deleted[0].data.kind if deleted else None,
        })
        return bool(deleted)

    # ==========================================================================
    # REPORT FEEDBACK
    # ==========================================================================

    def update_report_usefulness(self, report_id: str, feedback: ReportFeedback) -> Optional[SessionReportCard]:
        """The only mutable field of a report."""
        feedback = ReportFeedback(feedback)
        reports = self._rewrite(
            SESSION_REPORTS_KEY, SessionReportCard,
            lambda reports: [
                r.model_copy(update={"usefulness_feedback": feedback}) if r.id == report_id else r
                for r in reports
            ],
        )
        updated = next((r for r in reports if r.id == report_id), None)
        if updated:
            self._track(AnalyticsEventName.SESSION_REPORT_FEEDBACK, {
                "report_id": report_id,
                "feedback": feedback.value,
                "coach": updated.coach.value,
                "quality_status": updated.quality_status.value if updated.quality_status else None,
            })
        return updated
