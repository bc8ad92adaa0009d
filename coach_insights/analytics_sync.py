"""
Client-side flush of the local event log to the ingest server.
"""

from typing import Any, Dict, Optional
import logging

import requests

from config import Settings
from coach_insights.analytics import AnalyticsEventName, AnalyticsEventStore

SYNC_PATH = "/api/analytics/sync"


class AnalyticsSyncClient:

    def __init__(
        self,
        events: AnalyticsEventStore,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.events = events
        self.base_url = (base_url or Settings.ANALYTICS_SERVER_URL).rstrip("/")
        self.timeout_s = timeout_s if timeout_s is not None else Settings.SYNC_TIMEOUT_S
        self.session = session or requests.Session()

    def flush(self) -> Optional[Dict[str, Any]]:
        """
        POST the whole capped log. The server dedups by id, so re-sending
        already synced events is harmless.

        Returns the server response, or None on any transport/HTTP failure.
        """
        batch = [e.to_json_dict() for e in self.events.get_tracked_events()]
        if not batch:
            return {"accepted": 0, "totalStored": None, "summary": None}

        try:
            response = self.session.post(
                f"{self.base_url}{SYNC_PATH}",
                json={"events": batch},
                timeout=self.timeout_s,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logging.warning(f"Analytics sync failed, will retry on next flush: {e}")
            return None

        if not isinstance(body, dict):
            logging.warning("Analytics sync returned an unexpected body")
            return None

        self.events.track_event(AnalyticsEventName.ANALYTICS_SYNCED, {
            "sent": len(batch),
            "accepted": body.get("accepted"),
            "total_stored": body.get("totalStored"),
        })
        return body
