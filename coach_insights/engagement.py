"""
Gentle re-engagement reminders keyed to the newest outcome.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from coach_insights.repository import InsightRepository
from coach_insights.schemas import CoachType, OutcomeKind, outcome_kind, parse_iso, utc_now_iso
from coach_insights.store import KeyValueStore

LAST_OPENED_KEY = "coach.engagement.lastOpenedAt"
LAST_REMINDER_KEY = "coach.engagement.lastReminderAt"
REMINDER_QUIET_PERIOD = timedelta(days=7)
MIN_OUTCOMES_FOR_REMINDER = 3

REMINDERS = {
    OutcomeKind.DECISION: ("You made a decision recently. Want to revisit it?", CoachType.DECISION),
    OutcomeKind.FOCUS: ("You paused after choosing one priority. Want to check in?", CoachType.FOCUS),
    OutcomeKind.REFLECTION: ("You captured an insight recently. Want to check in?", CoachType.REFLECTION),
}


@dataclass
class GentleReminder:
    message: str
    coach: CoachType


class EngagementTracker:

    def __init__(self, store: KeyValueStore, repository: InsightRepository):
        self.store = store
        self.repository = repository

    def mark_app_opened(self, now: Optional[datetime] = None):
        self.store.set(LAST_OPENED_KEY, utc_now_iso(now))

    def mark_reminder_shown(self, now: Optional[datetime] = None):
        self.store.set(LAST_REMINDER_KEY, utc_now_iso(now))

    def maybe_get_gentle_reminder(self, now: Optional[datetime] = None) -> Optional[GentleReminder]:
        outcomes = self.repository.get_outcome_cards()
        if len(outcomes) < MIN_OUTCOMES_FOR_REMINDER:
            return None

        now = now or datetime.now(timezone.utc)
        last_opened = parse_iso(self.store.get(LAST_OPENED_KEY))
        last_reminder = parse_iso(self.store.get(LAST_REMINDER_KEY))

        if last_opened and now - last_opened < REMINDER_QUIET_PERIOD:
            return None
        if last_reminder and now - last_reminder < REMINDER_QUIET_PERIOD:
            return None

        message, coach = REMINDERS[outcome_kind(outcomes[0].data)]
        return GentleReminder(message=message, coach=coach)
