"""
Session Pipeline Tests
======================

End-to-end commits through the orchestrator, the one-shot closer,
extraction against a mock completion service, outcome lifecycle and
concurrent commits.

Scenarios:
1. Focus session with no AI candidates -> heuristic outcome + fallback report
2. Ineligible transcript -> nothing written
3. Third outcome of the week -> weekly summary
4. Closing twice -> one session, one blocked event
5. Completion service down -> fallback path, telemetry records it
6. Parallel commits -> no lost writes
"""

from datetime import datetime, timedelta, timezone
import json
import threading

import pytest

from config import Settings

from coach_insights.analytics import AnalyticsEventStore
from coach_insights.engagement import LAST_OPENED_KEY, EngagementTracker
from coach_insights.extraction import SessionExtractor, build_extractor, parse_json_object
from coach_insights.llm_client import MockLLMClient
from coach_insights.repository import OUTCOMES_KEY, SESSION_REPORTS_KEY, InsightRepository
from coach_insights.schemas import (
    CoachType, FocusOutcome, ReportFeedback, ReportQualityStatus, ReportSource,
)
from coach_insights.session_pipeline import SessionCloser, SessionPersistenceOrchestrator
from coach_insights.store import InMemoryStore
from coach_insights.weekly_summary import WeeklySummarizer

NOW = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)
STARTED_AT = "2026-10-14T11:40:00.000Z"

FOCUS_MESSAGES = [
    {"role": "assistant", "content": "What is pulling at your attention today?", "isOpening": True},
    {"role": "user", "content": "I have five competing deadlines"},
    {"role": "assistant", "content": "Pick the one with the nearest deadline and do the first concrete step today."},
]

OUTCOME_REPLY = json.dumps({
    "kind": "focus",
    "priority": "Finish the grant budget before Friday",
    "firstStep": "Open the spreadsheet and fill in salaries",
    "isCompleted": False,
})

REPORT_REPLY = "```json\n" + json.dumps({
    "summary": "You chose the grant budget as the single deadline that matters this week.",
    "pattern": "Competing deadlines freeze you until one concrete number gets written down.",
    "nextCheckInPrompt": "How did filling in the salaries change your sense of the budget?",
    "confidence": 0.82,
}) + "\n```"


def event_names(analytics):
    return [e.name for e in analytics.get_tracked_events()]


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def orchestrator(store):
    return SessionPersistenceOrchestrator(store, summarizer=WeeklySummarizer(store, tz=timezone.utc))


class TestPersistSession:

    def test_focus_session_without_candidates(self, orchestrator):
        commit = orchestrator.persist_session(CoachType.FOCUS, STARTED_AT, FOCUS_MESSAGES, now=NOW)

        outcome = commit.outcome.data
        assert isinstance(outcome, FocusOutcome)
        assert outcome.priority == "Pick the one with the nearest deadline and do the first concrete step today."
        assert outcome.first_step == "Take a single step in the next 20 minutes."
        assert outcome.is_completed is False

        assert commit.report.quality_status == ReportQualityStatus.FALLBACK_ONLY
        assert commit.report.source == ReportSource.FALLBACK
        assert outcome.priority in commit.report.summary
        assert commit.report.source_outcome_id == commit.outcome.id
        assert commit.history.outcome_id == commit.outcome.id
        assert len(commit.history.messages) == 2

        assert event_names(orchestrator.analytics) == ["session_report_saved", "session_saved"]
        saved = orchestrator.analytics.get_tracked_events()[1].payload
        assert saved["used_outcome_override"] is False
        assert saved["outcome_kind"] == "focus"

    def test_ineligible_transcript_writes_nothing(self, store, orchestrator):
        messages = [
            {"role": "assistant", "content": "Welcome back.", "isOpening": True},
            {"role": "user", "content": "hello"},
        ]

        assert orchestrator.persist_session(CoachType.REFLECTION, STARTED_AT, messages, now=NOW) is None
        assert store.keys() == []

    def test_candidates_are_used_when_they_pass(self, orchestrator):
        commit = orchestrator.persist_session(
            CoachType.FOCUS, STARTED_AT, FOCUS_MESSAGES,
            outcome_candidate=json.loads(OUTCOME_REPLY),
            report_candidate=parse_json_object(REPORT_REPLY),
            now=NOW,
        )

        assert commit.used_outcome_candidate is True
        assert commit.outcome.data.priority == "Finish the grant budget before Friday."
        assert commit.report.quality_status == ReportQualityStatus.ACCEPTED_AI
        assert commit.report.confidence == 0.82

    def test_third_outcome_creates_weekly_summary(self, orchestrator):
        commits = [
            orchestrator.persist_session(CoachType.FOCUS, STARTED_AT, FOCUS_MESSAGES, now=NOW + timedelta(minutes=i))
            for i in range(4)
        ]

        assert [c.weekly_summary is not None for c in commits] == [False, False, True, False]
        summaries = orchestrator.repository.get_weekly_summaries()
        assert len(summaries) == 1
        assert summaries[0].summary.startswith("This week you recorded 3 outcomes")

    def test_memory_is_synced(self, orchestrator):
        orchestrator.persist_session(CoachType.FOCUS, STARTED_AT, FOCUS_MESSAGES, now=NOW)

        labels = [i.label for i in orchestrator.memory.get_items()]
        assert labels == [
            "Current priority: Pick the one with the nearest deadline and do the first concrete step today."
        ]

    def test_parallel_commits_lose_nothing(self, store, orchestrator):
        errors = []

        def commit():
            try:
                orchestrator.persist_session(CoachType.DECISION, STARTED_AT, FOCUS_MESSAGES, now=NOW)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=commit) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        repository = orchestrator.repository
        assert len(repository.get_outcome_cards()) == 16
        assert len(repository.get_session_history()) == 16
        assert len(repository.get_session_reports()) == 16
        assert len(repository.get_weekly_summaries()) == 1
        assert len(orchestrator.analytics.get_tracked_events()) == 32


class TestSessionCloser:

    def test_close_runs_extraction_once(self, store, orchestrator):
        llm = MockLLMClient(responses=[OUTCOME_REPLY, REPORT_REPLY])
        extractor = SessionExtractor(llm, orchestrator.analytics, timeout_s=1)
        closer = SessionCloser(orchestrator, CoachType.FOCUS, STARTED_AT, extractor)

        first = closer.close(FOCUS_MESSAGES, now=NOW)
        second = closer.close(FOCUS_MESSAGES, now=NOW)

        assert first.used_outcome_candidate is True
        assert first.report.quality_status == ReportQualityStatus.ACCEPTED_AI
        assert second is None
        assert len(orchestrator.repository.get_outcome_cards()) == 1
        assert len(llm.prompts) == 2
        assert event_names(orchestrator.analytics)[0] == "session_close_blocked"

    def test_service_failure_falls_back(self, orchestrator):
        extractor = SessionExtractor(MockLLMClient(error="timeout after 8s"), orchestrator.analytics)
        closer = SessionCloser(orchestrator, CoachType.FOCUS, STARTED_AT, extractor)

        commit = closer.close(FOCUS_MESSAGES, now=NOW)

        assert commit.used_outcome_candidate is False
        assert commit.report.quality_status == ReportQualityStatus.FALLBACK_ONLY
        extraction = next(
            e for e in orchestrator.analytics.get_tracked_events() if e.name == "outcome_extraction_result"
        )
        assert extraction.payload["received"] is False
        assert extraction.payload["used_fallback_outcome"] is True

    def test_mismatched_outcome_kind_is_recorded(self, orchestrator):
        reply = json.dumps({"kind": "decision", "decision": "Quit.", "tradeoffAccepted": "Less money."})
        extractor = SessionExtractor(MockLLMClient(responses=[reply, ""]), orchestrator.analytics)
        closer = SessionCloser(orchestrator, CoachType.FOCUS, STARTED_AT, extractor)

        commit = closer.close(FOCUS_MESSAGES, now=NOW)

        assert isinstance(commit.outcome.data, FocusOutcome)
        assert commit.used_outcome_candidate is False

    def test_right_kind_with_missing_fields_counts_as_fallback(self, orchestrator):
        """A reply that names the right kind but fails validation is not a usable candidate."""
        extractor = SessionExtractor(MockLLMClient(responses=['{"kind": "focus"}', ""]), orchestrator.analytics)
        closer = SessionCloser(orchestrator, CoachType.FOCUS, STARTED_AT, extractor)

        commit = closer.close(FOCUS_MESSAGES, now=NOW)

        assert commit.used_outcome_candidate is False
        extraction = next(
            e for e in orchestrator.analytics.get_tracked_events() if e.name == "outcome_extraction_result"
        )
        assert extraction.payload["received"] is True
        assert extraction.payload["used_fallback_outcome"] is True

    def test_ineligible_close_skips_extraction(self, orchestrator):
        llm = MockLLMClient(responses=[OUTCOME_REPLY])
        closer = SessionCloser(orchestrator, CoachType.FOCUS, STARTED_AT, SessionExtractor(llm))

        assert closer.close(FOCUS_MESSAGES[:2], now=NOW) is None
        assert llm.prompts == []
        closed = orchestrator.analytics.get_tracked_events()[0]
        assert closed.name == "session_closed"
        assert closed.payload["eligible"] is False


class TestExtractionParsing:

    @pytest.mark.parametrize("text,expected", [
        ('{"a": 1}', {"a": 1}),
        ('```json\n{"a": 1}\n```', {"a": 1}),
        ('```\n{"a": 1}\n```', {"a": 1}),
        ('Sure! Here it is: {"a": 1} hope that helps', {"a": 1}),
        ("no json here", None),
        ("[1, 2]", None),
        ("", None),
    ])
    def test_parse_json_object(self, text, expected):
        assert parse_json_object(text) == expected

    def test_prompt_names_coach_and_kind(self):
        llm = MockLLMClient(responses=[OUTCOME_REPLY])
        SessionExtractor(llm).extract_outcome(CoachType.REFLECTION, [])

        assert "Reflection Coach" in llm.last_prompt
        assert '"kind": "reflection"' in llm.last_prompt

    def test_no_api_key_means_no_extractor(self, monkeypatch):
        monkeypatch.setattr(Settings, "GEMINI_API_KEY", None)

        assert build_extractor() is None


class TestOutcomeLifecycle:

    def setup_method(self):
        self.store = InMemoryStore()
        self.analytics = AnalyticsEventStore(self.store)
        self.orchestrator = SessionPersistenceOrchestrator(self.store, self.analytics)
        self.repository = self.orchestrator.repository
        self.commit = self.orchestrator.persist_session(CoachType.FOCUS, STARTED_AT, FOCUS_MESSAGES, now=NOW)

    def test_focus_completion_is_tracked(self):
        updated = self.repository.set_focus_completed(self.commit.outcome.id)

        assert updated.data.is_completed is True
        assert event_names(self.analytics)[:2] == ["outcome_focus_completed", "outcome_updated"]

    def test_edit_normalizes_text_and_ignores_unknown_fields(self):
        updated = self.repository.edit_outcome_text(
            self.commit.outcome.id, priority="  Call the funder  ", decision="nope", kind="decision"
        )

        assert updated.data.priority == "Call the funder."
        assert updated.data.kind == "focus"

    def test_archive_hides_from_timeline(self):
        self.repository.archive_outcome_card(self.commit.outcome.id)

        types = [item.type for item in self.repository.get_timeline_items()]
        assert "outcome" not in types
        assert "session-report" in types
        assert self.repository.get_outcome_cards()[0].archived_at is not None

    def test_delete(self):
        assert self.repository.delete_outcome_card(self.commit.outcome.id) is True
        assert self.repository.delete_outcome_card(self.commit.outcome.id) is False
        assert self.repository.get_outcome_cards() == []

    def test_unknown_outcome_update_returns_none(self):
        assert self.repository.set_focus_completed("outcome-missing") is None

    def test_report_feedback(self):
        updated = self.repository.update_report_usefulness(self.commit.report.id, ReportFeedback.USEFUL)

        assert updated.usefulness_feedback == ReportFeedback.USEFUL
        feedback = self.analytics.get_tracked_events()[0]
        assert feedback.name == "session_report_feedback"
        assert feedback.payload["feedback"] == "useful"

    def test_legacy_reports_get_a_quality_status(self):
        raw = json.loads(self.store.get(SESSION_REPORTS_KEY))
        raw[0].pop("qualityStatus")
        raw[0]["source"] = "ai"
        self.store.set(SESSION_REPORTS_KEY, json.dumps(raw))

        report = self.repository.get_session_reports()[0]

        assert report.quality_status == ReportQualityStatus.ACCEPTED_AI

    def test_malformed_records_are_skipped(self):
        raw = json.loads(self.store.get(OUTCOMES_KEY))
        self.store.set(OUTCOMES_KEY, json.dumps(raw + [{"id": "broken"}, "junk"]))

        assert len(self.repository.get_outcome_cards()) == 1


class TestEngagementReminder:

    def setup_method(self):
        self.store = InMemoryStore()
        orchestrator = SessionPersistenceOrchestrator(self.store)
        for i, coach in enumerate([CoachType.FOCUS, CoachType.FOCUS, CoachType.DECISION]):
            orchestrator.persist_session(coach, STARTED_AT, FOCUS_MESSAGES, now=NOW + timedelta(minutes=i))
        self.tracker = EngagementTracker(self.store, InsightRepository(self.store))

    def test_reminder_after_quiet_week(self):
        self.tracker.mark_app_opened(NOW - timedelta(days=8))

        reminder = self.tracker.maybe_get_gentle_reminder(NOW)

        assert reminder.coach == CoachType.DECISION
        assert "decision" in reminder.message

    def test_no_reminder_when_recently_opened(self):
        self.tracker.mark_app_opened(NOW - timedelta(days=2))

        assert self.tracker.maybe_get_gentle_reminder(NOW) is None

    def test_no_reminder_twice_in_a_week(self):
        self.store.remove(LAST_OPENED_KEY)
        self.tracker.mark_reminder_shown(NOW - timedelta(days=1))

        assert self.tracker.maybe_get_gentle_reminder(NOW) is None

    def test_needs_three_outcomes(self):
        tracker = EngagementTracker(InMemoryStore(), InsightRepository(InMemoryStore()))

        assert tracker.maybe_get_gentle_reminder(NOW) is None
