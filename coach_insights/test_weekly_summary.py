"""
Weekly Pattern Summarizer Tests
===============================
"""

from datetime import datetime, timedelta, timezone
import itertools
import json
import time
from zoneinfo import ZoneInfo

import pytest

from coach_insights.schemas import (
    CoachType, DecisionOutcome, FocusOutcome, ReflectionOutcome, SessionOutcomeCard,
)
from coach_insights.store import InMemoryStore
from coach_insights.weekly_summary import (
    WEEKLY_SUMMARIES_KEY, WeeklySummarizer, build_weekly_summary_text, dominant_mode,
    extract_themes, get_week_range, outcomes_in_week,
)

# Wednesday
NOW = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)


def focus(n, priority="Finish the budget draft.", step="Open the budget sheet.", done=False, hours_ago=0):
    return SessionOutcomeCard(
        id=f"outcome-f{n}",
        coach=CoachType.FOCUS,
        created_at=(NOW - timedelta(hours=hours_ago)).isoformat(),
        source_session_id=f"session-f{n}",
        data=FocusOutcome(priority=priority, first_step=step, is_completed=done),
    )


def decision(n, hours_ago=0):
    return SessionOutcomeCard(
        id=f"outcome-d{n}",
        coach=CoachType.DECISION,
        created_at=(NOW - timedelta(hours=hours_ago)).isoformat(),
        source_session_id=f"session-d{n}",
        data=DecisionOutcome(decision="Accept the budget cut.", tradeoff_accepted="Fewer hires."),
    )


def reflection(n, hours_ago=0):
    return SessionOutcomeCard(
        id=f"outcome-r{n}",
        coach=CoachType.REFLECTION,
        created_at=(NOW - timedelta(hours=hours_ago)).isoformat(),
        source_session_id=f"session-r{n}",
        data=ReflectionOutcome(insight="Silence feels risky.", question_to_carry="Who taught me that?"),
    )


class TestWeekRange:

    def test_monday_to_sunday(self):
        start, end = get_week_range(NOW, timezone.utc)

        assert start == datetime(2026, 10, 12, tzinfo=timezone.utc)
        assert end == datetime(2026, 10, 18, 23, 59, 59, 999000, tzinfo=timezone.utc)

    def test_sunday_belongs_to_preceding_monday(self):
        start, _ = get_week_range(datetime(2026, 10, 18, 22, 0, tzinfo=timezone.utc), timezone.utc)

        assert start.day == 12

    def test_local_zone_shifts_week(self):
        """Monday 01:00 in UTC+3 is still Sunday in UTC."""
        plus_three = timezone(timedelta(hours=3))
        moment = datetime(2026, 10, 18, 22, 0, tzinfo=timezone.utc)

        start, _ = get_week_range(moment, plus_three)

        assert start == datetime(2026, 10, 19, tzinfo=plus_three)


class TestSummaryText:

    def test_digest_paragraph(self):
        outcomes = [
            focus(1, done=True, hours_ago=1),
            focus(2, priority="Review the budget numbers.", step="Email the team.", hours_ago=2),
            decision(1, hours_ago=3),
        ]

        text = build_weekly_summary_text(outcomes)

        assert text == (
            "This week you recorded 3 outcomes; most effort went into focus execution. "
            "Repeating themes: budget. "
            "1/2 focus outcomes were completed. "
            "Coaching flow: Focus → Focus → Decision."
        )

    def test_no_focus_outcomes(self):
        text = build_weekly_summary_text([decision(1), reflection(1), reflection(2)])

        assert "No focus outcomes were logged this week." in text
        assert "most effort went into reflection depth" in text

    def test_dominant_mode_tie_prefers_focus(self):
        assert dominant_mode([reflection(1), decision(1), focus(1)]) == "focus execution"

    def test_themes_skip_stop_words_and_singletons(self):
        outcomes = [
            focus(1, priority="Ship this with care.", step="Write tests."),
            focus(2, priority="Ship this carefully.", step="Write docs."),
        ]

        assert extract_themes(outcomes) == ["ship", "write"]

    def test_flow_is_limited_to_four(self):
        outcomes = [reflection(i) for i in range(6)]

        text = build_weekly_summary_text(outcomes)

        assert text.endswith("Coaching flow: Reflection → Reflection → Reflection → Reflection.")


class TestWeeklySummarizer:

    def make(self):
        store = InMemoryStore()
        return store, WeeklySummarizer(store, tz=timezone.utc)

    def test_below_threshold_creates_nothing(self):
        store, summarizer = self.make()

        assert summarizer.maybe_create([focus(1), focus(2)], NOW) is None
        assert store.get(WEEKLY_SUMMARIES_KEY) is None

    def test_outcomes_outside_week_do_not_count(self):
        _, summarizer = self.make()
        old = [focus(i, hours_ago=24 * 10) for i in range(5)]

        assert summarizer.maybe_create(old + [focus(9)], NOW) is None

    def test_created_exactly_once_per_week(self):
        """Five commits in one week, any order: only the first eligible call writes."""
        outcomes = [focus(1, hours_ago=1), decision(1, hours_ago=2), reflection(1, hours_ago=3),
                    focus(2, hours_ago=4), focus(3, hours_ago=5)]

        for order in itertools.islice(itertools.permutations(outcomes), 0, 120, 17):
            store, summarizer = self.make()
            created = []
            for k in range(1, len(order) + 1):
                card = summarizer.maybe_create(list(order[:k]), NOW)
                if card:
                    created.append((k, card))

            assert len(created) == 1
            assert created[0][0] == 3
            stored = json.loads(store.get(WEEKLY_SUMMARIES_KEY))
            assert len(stored) == 1
            assert stored[0]["weekStartISO"] == "2026-10-12T00:00:00.000Z"

    def test_next_week_gets_its_own_card(self):
        store, summarizer = self.make()
        this_week = [focus(i, hours_ago=i) for i in range(3)]
        summarizer.maybe_create(this_week, NOW)

        later = NOW + timedelta(days=7)
        next_week = [
            SessionOutcomeCard.model_validate(dict(o.to_json_dict(), createdAt=later.isoformat()))
            for o in this_week
        ]
        card = summarizer.maybe_create(next_week, later)

        assert card is not None
        assert [c.week_start_iso for c in summarizer.get_summaries()] == [
            "2026-10-19T00:00:00.000Z", "2026-10-12T00:00:00.000Z",
        ]

    def test_corrupt_stored_summaries_read_as_empty(self):
        store, summarizer = self.make()
        store.set(WEEKLY_SUMMARIES_KEY, "{not json")

        assert summarizer.get_summaries() == []


BERLIN = ZoneInfo("Europe/Berlin")
# Clocks go back on Sunday 2026-10-25, so Monday is UTC+2 and Sunday UTC+1
SATURDAY = datetime(2026, 10, 24, 10, 0, tzinfo=timezone.utc)
SUNDAY = datetime(2026, 10, 25, 10, 0, tzinfo=timezone.utc)


def at(n, moment):
    return SessionOutcomeCard(
        id=f"outcome-dst{n}",
        coach=CoachType.FOCUS,
        created_at=moment.isoformat(),
        source_session_id=f"session-dst{n}",
        data=FocusOutcome(priority="Plan the launch.", first_step="Draft the agenda."),
    )


@pytest.fixture
def berlin_local_time(monkeypatch):
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv("TZ", "Europe/Berlin")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


class TestDaylightSavingWeek:

    def test_bounds_use_the_offset_of_their_own_day(self):
        start, end = get_week_range(SUNDAY, BERLIN)

        assert start.astimezone(timezone.utc) == datetime(2026, 10, 18, 22, 0, tzinfo=timezone.utc)
        assert end.astimezone(timezone.utc) == datetime(2026, 10, 25, 22, 59, 59, 999000, tzinfo=timezone.utc)
        assert get_week_range(SATURDAY, BERLIN)[0] == start

    def test_early_monday_outcome_belongs_to_the_week(self):
        start, end = get_week_range(SUNDAY, BERLIN)
        monday_half_past_midnight = datetime(2026, 10, 18, 22, 30, tzinfo=timezone.utc)

        assert outcomes_in_week([at(1, monday_half_past_midnight)], start, end)

    def test_one_card_across_the_clock_change(self):
        store = InMemoryStore()
        summarizer = WeeklySummarizer(store, tz=BERLIN)
        outcomes = [at(i, SATURDAY - timedelta(hours=i)) for i in range(3)]

        saturday_card = summarizer.maybe_create(outcomes, SATURDAY)
        sunday_card = summarizer.maybe_create([at(9, SUNDAY)] + outcomes, SUNDAY)

        assert saturday_card.week_start_iso == "2026-10-18T22:00:00.000Z"
        assert sunday_card is None
        assert len(summarizer.get_summaries()) == 1

    def test_one_card_across_the_clock_change_in_system_zone(self, berlin_local_time):
        summarizer = WeeklySummarizer(InMemoryStore())
        outcomes = [at(i, SATURDAY - timedelta(hours=i)) for i in range(3)]

        summarizer.maybe_create(outcomes, SATURDAY)
        summarizer.maybe_create([at(9, SUNDAY)] + outcomes, SUNDAY)

        assert [c.week_start_iso for c in summarizer.get_summaries()] == ["2026-10-18T22:00:00.000Z"]
