"""
Analytics Event Store (client)
==============================

Append-only local telemetry log, capped to the most recent events and read
in full for batch sync. Tracking never raises: telemetry must not break the
session flow.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
import logging
import uuid

from coach_insights.policy import DEFAULT_POLICY, InsightPolicy
from coach_insights.schemas import AnalyticsEvent, create_id, utc_now_iso
from coach_insights.store import KeyValueStore, dump_json_array, read_json_array

ANALYTICS_KEY = "coach.analytics.events"
ANALYTICS_INSTALL_ID_KEY = "coach.analytics.installId"


class AnalyticsEventName(str, Enum):
    SESSION_SAVED = "session_saved"
    SESSION_CLOSED = "session_closed"
    SESSION_CLOSE_BLOCKED = "session_close_blocked"
    OUTCOME_EXTRACTION_RESULT = "outcome_extraction_result"
    SESSION_REPORT_EXTRACTION_RESULT = "session_report_extraction_result"
    SESSION_REPORT_SAVED = "session_report_saved"
    SESSION_REPORT_FEEDBACK = "session_report_feedback"
    OUTCOME_UPDATED = "outcome_updated"
    OUTCOME_FOCUS_COMPLETED = "outcome_focus_completed"
    OUTCOME_ARCHIVED = "outcome_archived"
    OUTCOME_DELETED = "outcome_deleted"
    ANALYTICS_SYNCED = "analytics_synced"
    REMINDER_SCHEDULED = "reminder_scheduled"
    REMINDER_TRIGGERED = "reminder_triggered"
    REMINDER_OPENED = "reminder_opened"
    CALENDAR_CONNECT_REQUESTED = "calendar_connect_requested"
    CALENDAR_CONNECTED = "calendar_connected"
    CALENDAR_DISCONNECTED = "calendar_disconnected"
    CALENDAR_SYNC_STARTED = "calendar_sync_started"
    CALENDAR_SYNC_SUCCEEDED = "calendar_sync_succeeded"
    CALENDAR_SYNC_FAILED = "calendar_sync_failed"


def decode_events(raw: Optional[str]) -> List[AnalyticsEvent]:
    events = []
    for entry in read_json_array(raw, ANALYTICS_KEY):
        try:
            events.append(AnalyticsEvent.model_validate(entry))
        except ValueError:
            continue
    return events


class AnalyticsEventStore:

    def __init__(self, store: KeyValueStore, policy: InsightPolicy = DEFAULT_POLICY):
        self.store = store
        self.policy = policy

    def get_install_id(self) -> str:
        """Generated once on first use, then persisted."""
        created: List[str] = []

        def ensure(raw: Optional[str]) -> Optional[str]:
            if raw:
                created.append(raw)
                return None
            install_id = f"install-{uuid.uuid4().hex}"
            created.append(install_id)
            return install_id

        self.store.update(ANALYTICS_INSTALL_ID_KEY, ensure)
        return created[0]

    def track_event(self, name: AnalyticsEventName, payload: Optional[Dict[str, Any]] = None) -> Optional[AnalyticsEvent]:
        try:
            install_id = self.get_install_id()
            event = AnalyticsEvent(
                id=create_id("event"),
                name=AnalyticsEventName(name).value,
                created_at=utc_now_iso(),
                payload={**(payload or {}), "install_id": install_id},
            )

            def prepend(raw: Optional[str]) -> str:
                existing = read_json_array(raw, ANALYTICS_KEY)
                return dump_json_array([event.to_json_dict()] + existing[:self.policy.client_event_cap - 1])

            self.store.update(ANALYTICS_KEY, prepend)
            return event
        except Exception as e:
            # non-blocking
            logging.warning(f"Dropping analytics event {name}: {e}")
            return None

    def get_tracked_events(self) -> List[AnalyticsEvent]:
        """Newest first, at most `client_event_cap` entries."""
        return decode_events(self.store.get(ANALYTICS_KEY))

    def get_outcome_quality_metrics(self) -> List[Dict[str, Any]]:
        """Labelled counters for the local insights screen."""
        events = self.get_tracked_events()

        def count(name: AnalyticsEventName, key: Optional[str] = None, expected: Any = None) -> int:
            return len([
                e for e in events
                if e.name == name.value and (key is None or (e.payload or {}).get(key) == expected)
            ])

        return [
            {"label": "Sessions saved", "value": count(AnalyticsEventName.SESSION_SAVED)},
            {"label": "Outcome fallback used",
             "value": count(AnalyticsEventName.OUTCOME_EXTRACTION_RESULT, "used_fallback_outcome", True)},
            {"label": "Reports accepted (AI)",
             "value": count(AnalyticsEventName.SESSION_REPORT_SAVED, "report_quality_status", "accepted_ai")},
            {"label": "Reports rejected to fallback",
             "value": count(AnalyticsEventName.SESSION_REPORT_SAVED, "report_quality_status", "rejected_ai_fallback")},
            {"label": "Report feedback: useful",
             "value": count(AnalyticsEventName.SESSION_REPORT_FEEDBACK, "feedback", "useful")},
            {"label": "Report feedback: not useful",
             "value": count(AnalyticsEventName.SESSION_REPORT_FEEDBACK, "feedback", "not_useful")},
            {"label": "Outcome edits", "value": count(AnalyticsEventName.OUTCOME_UPDATED)},
            {"label": "Focus completed", "value": count(AnalyticsEventName.OUTCOME_FOCUS_COMPLETED)},
            {"label": "Outcomes archived", "value": count(AnalyticsEventName.OUTCOME_ARCHIVED)},
            {"label": "Outcomes deleted", "value": count(AnalyticsEventName.OUTCOME_DELETED)},
        ]
