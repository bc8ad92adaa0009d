"""
Coach Insights - Session-to-Insight Pipeline
=============================================

Turns a closed coaching conversation into durable artifacts:
- a typed outcome (focus / decision / reflection)
- a quality-gated session report
- a weekly pattern digest (once per ISO week)
- a staged long-term memory profile

Plus a client event log and a deduplicating server-side aggregator
for product KPIs.

Key Design Principles:
1. Untrusted AI output is gated against a deterministic fallback
2. Nothing in the pipeline is fatal - every failure degrades to a default
3. Every persisted collection is written through a per-key update
4. Thresholds live in InsightPolicy, not in the algorithms
"""

from coach_insights.policy import InsightPolicy, DEFAULT_POLICY
from coach_insights.store import KeyValueStore, InMemoryStore, SqlKeyValueStore
from coach_insights.repository import InsightRepository
from coach_insights.memory_engine import MemoryEngine
from coach_insights.weekly_summary import WeeklySummarizer
from coach_insights.analytics import AnalyticsEventStore, AnalyticsEventName
from coach_insights.analytics_ingest import AnalyticsIngestService
from coach_insights.session_pipeline import SessionPersistenceOrchestrator, SessionCloser

__all__ = [
    'InsightPolicy',
    'DEFAULT_POLICY',
    'KeyValueStore',
    'InMemoryStore',
    'SqlKeyValueStore',
    'InsightRepository',
    'MemoryEngine',
    'WeeklySummarizer',
    'AnalyticsEventStore',
    'AnalyticsEventName',
    'AnalyticsIngestService',
    'SessionPersistenceOrchestrator',
    'SessionCloser',
]
