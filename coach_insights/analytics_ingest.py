"""
Analytics Ingest & Aggregator (server)
======================================

Merges client event batches into one flat server-side collection and
computes KPI rollups on demand.

Dedup-by-id is the defining invariant: re-sending a batch that was already
ingested accepts 0 events and leaves the stored total unchanged.
"""

from collections import Counter
from typing import Any, Dict, List, Optional, Tuple
import logging

from coach_insights.analytics import AnalyticsEventName
from coach_insights.policy import DEFAULT_POLICY, InsightPolicy
from coach_insights.schemas import AnalyticsEvent, iso_sort_key, parse_iso
from coach_insights.store import KeyValueStore, dump_json_array, read_json_array

SERVER_EVENTS_KEY = "server.analytics.events"

# kpi name -> (numerator, denominator); each side is (event name, payload key, expected value)
KPI_DEFINITIONS = {
    "outcome_save_rate": (
        (AnalyticsEventName.SESSION_SAVED, None, None),
        (AnalyticsEventName.SESSION_CLOSED, None, None),
    ),
    "outcome_fallback_rate": (
        (AnalyticsEventName.OUTCOME_EXTRACTION_RESULT, "used_fallback_outcome", True),
        (AnalyticsEventName.OUTCOME_EXTRACTION_RESULT, None, None),
    ),
    "report_acceptance_rate": (
        (AnalyticsEventName.SESSION_REPORT_SAVED, "report_quality_status", "accepted_ai"),
        (AnalyticsEventName.SESSION_REPORT_SAVED, None, None),
    ),
    "report_rejection_rate": (
        (AnalyticsEventName.SESSION_REPORT_SAVED, "report_quality_status", "rejected_ai_fallback"),
        (AnalyticsEventName.SESSION_REPORT_SAVED, None, None),
    ),
    "report_usefulness_rate": (
        (AnalyticsEventName.SESSION_REPORT_FEEDBACK, "feedback", "useful"),
        (AnalyticsEventName.SESSION_REPORT_FEEDBACK, None, None),
    ),
    "focus_completion_rate": (
        (AnalyticsEventName.OUTCOME_FOCUS_COMPLETED, None, None),
        (AnalyticsEventName.SESSION_SAVED, "outcome_kind", "focus"),
    ),
    "reminder_open_rate": (
        (AnalyticsEventName.REMINDER_OPENED, None, None),
        (AnalyticsEventName.REMINDER_TRIGGERED, None, None),
    ),
    "calendar_sync_success_rate": (
        (AnalyticsEventName.CALENDAR_SYNC_SUCCEEDED, None, None),
        (AnalyticsEventName.CALENDAR_SYNC_STARTED, None, None),
    ),
}


def is_valid_event(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    return all(isinstance(entry.get(field), str) for field in ("name", "id", "createdAt"))


def _clean_event(entry: Dict[str, Any]) -> Dict[str, Any]:
    payload = entry.get("payload")
    cleaned = {"id": entry["id"], "name": entry["name"], "createdAt": entry["createdAt"]}
    if isinstance(payload, dict):
        cleaned["payload"] = payload
    return cleaned


def safe_ratio(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return round(numerator / denominator, 3)


def merge_events(
    existing: List[Dict[str, Any]],
    incoming: List[Any],
    cap: int = DEFAULT_POLICY.server_event_cap,
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Returns (merged newest-first list capped to `cap`, newly accepted count).
    Invalid entries are dropped without being counted.
    """
    merged = [e for e in existing if is_valid_event(e)]
    seen = {e["id"] for e in merged}
    accepted = 0

    for entry in incoming:
        if not is_valid_event(entry) or entry["id"] in seen:
            continue
        merged.append(_clean_event(entry))
        seen.add(entry["id"])
        accepted += 1

    merged.sort(key=lambda e: iso_sort_key(e["createdAt"]), reverse=True)
    return merged[:cap], accepted


def _count(events: List[AnalyticsEvent], rule) -> int:
    name, key, expected = rule
    return len([
        e for e in events
        if e.name == name.value and (key is None or (e.payload or {}).get(key) == expected)
    ])


def summarize_events(events: List[AnalyticsEvent]) -> Dict[str, Any]:
    """Totals, per-name counters, KPI ratios and install counts."""
    by_name = Counter(e.name for e in events)
    metrics = {name.value: by_name.get(name.value, 0) for name in AnalyticsEventName}

    kpis = {
        kpi: safe_ratio(_count(events, numerator), _count(events, denominator))
        for kpi, (numerator, denominator) in KPI_DEFINITIONS.items()
    }

    timestamps = [e.created_at for e in events if parse_iso(e.created_at) is not None]
    latest = max(timestamps, key=iso_sort_key) if timestamps else None

    installs = Counter(
        (e.payload or {}).get("install_id") for e in events
        if isinstance((e.payload or {}).get("install_id"), str)
    )

    return {
        "total": len(events),
        "latestEventAt": latest,
        "metrics": metrics,
        "kpis": kpis,
        "installs": {
            "unique": len(installs),
            "eventsPerInstall": dict(installs.most_common()),
        },
    }


class AnalyticsIngestService:
    """Server-side sync endpoint logic over a flat key-value collection."""

    def __init__(self, store: KeyValueStore, policy: InsightPolicy = DEFAULT_POLICY):
        self.store = store
        self.policy = policy

    def load_events(self) -> List[AnalyticsEvent]:
        events = []
        for entry in read_json_array(self.store.get(SERVER_EVENTS_KEY), SERVER_EVENTS_KEY):
            if not is_valid_event(entry):
                continue
            try:
                events.append(AnalyticsEvent.model_validate(entry))
            except ValueError:
                continue
        return events

    def ingest(self, incoming: List[Any]) -> Dict[str, Any]:
        """
        Merge a batch. Returns {accepted, totalStored, summary}.
        """
        outcome: Dict[str, Any] = {}

        def apply(raw: Optional[str]) -> str:
            existing = read_json_array(raw, SERVER_EVENTS_KEY)
            merged, accepted = merge_events(existing, incoming or [], self.policy.server_event_cap)
            outcome["accepted"] = accepted
            outcome["total"] = len(merged)
            return dump_json_array(merged)

        self.store.update(SERVER_EVENTS_KEY, apply)
        logging.info(
            f"Analytics sync: {outcome['accepted']} of {len(incoming or [])} events accepted, "
            f"{outcome['total']} stored"
        )
        return {
            "accepted": outcome["accepted"],
            "totalStored": outcome["total"],
            "summary": self.summary(),
        }

    def summary(self) -> Dict[str, Any]:
        return summarize_events(self.load_events())
