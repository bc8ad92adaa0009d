"""
Weekly Pattern Summarizer
=========================

Once per ISO week (Monday 00:00 to Sunday 23:59:59, local clock), after
enough outcomes have landed, writes one immutable digest of that week.

NO LLM calls - pure Python logic.
"""

from collections import Counter
from datetime import date, datetime, time, timedelta, tzinfo
from typing import List, Optional, Tuple
import logging

from coach_insights.policy import DEFAULT_POLICY, InsightPolicy
from coach_insights.schemas import (
    OutcomeKind, SessionOutcomeCard, WeeklySummaryCard, create_id,
    outcome_kind, outcome_primary, outcome_secondary, parse_iso, utc_now_iso,
)
from coach_insights.store import KeyValueStore, dump_json_array, read_json_array
from coach_insights.text_heuristics import theme_tokens

WEEKLY_SUMMARIES_KEY = "coach.weeklySummaries"

# Order doubles as the tie-break for the dominant mode
MODE_LABELS = [
    (OutcomeKind.FOCUS, "focus execution"),
    (OutcomeKind.DECISION, "decision clarity"),
    (OutcomeKind.REFLECTION, "reflection depth"),
]


def _local_moment(day: date, clock: time, tz: Optional[tzinfo]) -> datetime:
    # Each bound gets the UTC offset in effect on its own date, not the one at `now`
    if tz is not None:
        return datetime.combine(day, clock, tzinfo=tz)
    return datetime.combine(day, clock).astimezone()


def get_week_range(now: datetime, tz: Optional[tzinfo] = None) -> Tuple[datetime, datetime]:
    """Monday 00:00:00.000 to Sunday 23:59:59.999 around `now` in `tz` (system local if None)."""
    today = now.astimezone(tz).date()
    monday = today - timedelta(days=today.weekday())
    week_start = _local_moment(monday, time.min, tz)
    week_end = _local_moment(monday + timedelta(days=6), time(23, 59, 59, 999000), tz)
    return week_start, week_end


def dominant_mode(outcomes: List[SessionOutcomeCard]) -> str:
    counts = Counter(outcome_kind(o.data) for o in outcomes)
    ranked = sorted(MODE_LABELS, key=lambda entry: -counts.get(entry[0], 0))
    return ranked[0][1]


def extract_themes(outcomes: List[SessionOutcomeCard], policy: InsightPolicy = DEFAULT_POLICY) -> List[str]:
    counts: Counter = Counter()
    for o in outcomes:
        counts.update(theme_tokens(f"{outcome_primary(o.data)} {outcome_secondary(o.data)}", policy))

    # most_common keeps first-seen order for equal counts
    return [
        token for token, count in counts.most_common()
        if count >= policy.theme_min_count
    ][:policy.theme_limit]


def build_weekly_summary_text(outcomes: List[SessionOutcomeCard], policy: InsightPolicy = DEFAULT_POLICY) -> str:
    """
    Compose the digest paragraph. `outcomes` must be newest first.
    """
    focus = [o for o in outcomes if outcome_kind(o.data) == OutcomeKind.FOCUS]
    focus_completed = len([o for o in focus if o.data.is_completed])

    mode = dominant_mode(outcomes)
    themes = extract_themes(outcomes, policy)
    flow = " → ".join(o.coach.short_name for o in outcomes[:policy.sequence_length])

    if focus:
        completion = f"{focus_completed}/{len(focus)} focus outcomes were completed."
    else:
        completion = "No focus outcomes were logged this week."

    parts = [f"This week you recorded {len(outcomes)} outcomes; most effort went into {mode}."]
    if themes:
        parts.append(f"Repeating themes: {' and '.join(themes)}.")
    parts.append(completion)
    parts.append(f"Coaching flow: {flow}.")
    return " ".join(parts)


def outcomes_in_week(
    outcomes: List[SessionOutcomeCard], week_start: datetime, week_end: datetime
) -> List[SessionOutcomeCard]:
    selected = []
    for o in outcomes:
        created = parse_iso(o.created_at)
        if created is not None and week_start <= created <= week_end:
            selected.append(o)
    return selected


class WeeklySummarizer:
    """Creates at most one WeeklySummaryCard per week start."""

    def __init__(self, store: KeyValueStore, policy: InsightPolicy = DEFAULT_POLICY, tz: Optional[tzinfo] = None):
        self.store = store
        self.policy = policy
        self.tz = tz

    def get_summaries(self) -> List[WeeklySummaryCard]:
        cards = []
        for raw in read_json_array(self.store.get(WEEKLY_SUMMARIES_KEY), WEEKLY_SUMMARIES_KEY):
            try:
                cards.append(WeeklySummaryCard.model_validate(raw))
            except ValueError as e:
                logging.warning(f"Skipping malformed weekly summary: {e}")
        return cards

    def maybe_create(
        self, outcomes: List[SessionOutcomeCard], now: Optional[datetime] = None
    ) -> Optional[WeeklySummaryCard]:
        """
        Returns the new card, or None when the thresholds are not met or the
        week already has a summary.
        """
        if len(outcomes) < self.policy.weekly_min_outcomes:
            return None

        week_start, week_end = get_week_range(now or datetime.now().astimezone(), self.tz)
        this_week = outcomes_in_week(outcomes, week_start, week_end)
        if len(this_week) < self.policy.weekly_min_outcomes:
            return None

        this_week.sort(key=lambda o: parse_iso(o.created_at), reverse=True)
        week_start_iso = utc_now_iso(week_start)
        created: List[WeeklySummaryCard] = []

        def append_if_missing(raw: Optional[str]) -> Optional[str]:
            existing = read_json_array(raw, WEEKLY_SUMMARIES_KEY)
            if any(isinstance(e, dict) and e.get("weekStartISO") == week_start_iso for e in existing):
                return None
            card = WeeklySummaryCard(
                id=create_id("weekly"),
                created_at=utc_now_iso(),
                week_start_iso=week_start_iso,
                week_end_iso=utc_now_iso(week_end),
                summary=build_weekly_summary_text(this_week, self.policy),
            )
            created.append(card)
            return dump_json_array([card.to_json_dict()] + existing)

        self.store.update(WEEKLY_SUMMARIES_KEY, append_if_missing)

        if created:
            logging.info(f"Weekly summary created for week starting {week_start_iso}")
            return created[0]
        return None
