"""
Session Extractor
=================

Asks the completion service for a structured outcome and report once a
conversation closes. Everything it returns is untrusted: the outcome
deriver and report gate decide what is kept.

Any transport failure, timeout or unparseable reply is reported as
"no candidate" (None) and the pipeline proceeds with its local fallback.
"""

from typing import Any, Dict, List, Optional
import json
import logging
import re

from config import Settings
from coach_insights.analytics import AnalyticsEventName, AnalyticsEventStore
from coach_insights.llm_client import GeminiClient, LLMClient
from coach_insights.outcome_deriver import is_outcome_compatible
from coach_insights.schemas import COACH_OUTCOME_KIND, CoachType, OutcomeKind, parse_outcome_candidate

MAX_TRANSCRIPT_MESSAGES = 24
MAX_MESSAGE_CHARS = 600

OUTCOME_FIELDS = {
    OutcomeKind.FOCUS: '"priority": "<one sentence>", "firstStep": "<one sentence>", "isCompleted": false',
    OutcomeKind.DECISION: '"decision": "<one sentence>", "tradeoffAccepted": "<one sentence>"',
    OutcomeKind.REFLECTION: '"insight": "<one sentence>", "questionToCarry": "<one sentence>"',
}

OUTCOME_PROMPT = """You summarize a finished coaching session with the {coach}.

TRANSCRIPT:
{transcript}

Return only JSON with this shape:
{{"kind": "{kind}", {fields}}}
Each value is a single sentence under 180 characters, in the user's own terms."""

REPORT_PROMPT = """You write a short session report for a finished coaching session with the {coach}.

TRANSCRIPT:
{transcript}

SESSION OUTCOME:
{outcome}

Return only JSON with this shape:
{{"summary": "<what the user worked out>", "pattern": "<what this says about how they use coaching>",
"nextCheckInPrompt": "<one question for the next check-in>", "confidence": <0.0-1.0>}}
Be specific to this conversation. Lower the confidence when the transcript is thin."""


def format_transcript(messages: List[Any]) -> str:
    lines = []
    for m in messages[-MAX_TRANSCRIPT_MESSAGES:]:
        role = m.role.value if hasattr(m.role, "value") else str(m.role)
        content = m.content.strip()
        if len(content) > MAX_MESSAGE_CHARS:
            content = content[:MAX_MESSAGE_CHARS] + "..."
        lines.append(f"[{role.upper()}]: {content}")
    return "\n".join(lines)


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Pull one JSON object out of a fenced or raw model reply."""
    text = (text or "").strip()
    if not text:
        return None

    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif "```" in text:
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1].strip()
    elif not text.startswith("{"):
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if not match:
            logging.warning(f"No JSON object found in extraction reply: {text[:100]}...")
            return None
        text = match.group()

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logging.warning(f"Extraction reply is not valid JSON: {e}")
        return None
    return data if isinstance(data, dict) else None


class SessionExtractor:

    def __init__(
        self,
        llm: LLMClient,
        analytics: Optional[AnalyticsEventStore] = None,
        timeout_s: Optional[float] = None,
    ):
        self.llm = llm
        self.analytics = analytics
        self.timeout_s = timeout_s if timeout_s is not None else Settings.EXTRACTION_TIMEOUT_S

    def _track(self, name: AnalyticsEventName, payload: Dict[str, Any]):
        if self.analytics:
            self.analytics.track_event(name, payload)

    def _ask(self, prompt: str) -> Optional[Dict[str, Any]]:
        response = self.llm.generate(prompt, max_tokens=300, temperature=0.2, timeout_s=self.timeout_s)
        if not response.ok:
            logging.warning(f"Extraction call returned nothing usable: {response.error or 'empty reply'}")
            return None
        return parse_json_object(response.text)

    def extract_outcome(self, coach: CoachType, messages: List[Any]) -> Optional[Dict[str, Any]]:
        coach = CoachType(coach)
        kind = COACH_OUTCOME_KIND[coach]
        prompt = OUTCOME_PROMPT.format(
            coach=coach.value,
            transcript=format_transcript(messages),
            kind=kind.value,
            fields=OUTCOME_FIELDS[kind],
        )
        candidate = self._ask(prompt)
        parsed = parse_outcome_candidate(candidate)
        usable = parsed is not None and is_outcome_compatible(coach, parsed)

        self._track(AnalyticsEventName.OUTCOME_EXTRACTION_RESULT, {
            "coach": coach.value,
            "received": candidate is not None,
            "used_fallback_outcome": not usable,
        })
        return candidate

    def extract_report(self, coach: CoachType, messages: List[Any], outcome: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        coach = CoachType(coach)
        prompt = REPORT_PROMPT.format(
            coach=coach.value,
            transcript=format_transcript(messages),
            outcome=json.dumps(outcome or {}, ensure_ascii=False),
        )
        candidate = self._ask(prompt)

        self._track(AnalyticsEventName.SESSION_REPORT_EXTRACTION_RESULT, {
            "coach": coach.value,
            "received": candidate is not None,
        })
        return candidate


def build_extractor(analytics: Optional[AnalyticsEventStore] = None) -> Optional[SessionExtractor]:
    """Gemini-backed extractor, or None when no API key is configured."""
    if not Settings.GEMINI_API_KEY:
        logging.info("GEMINI_API_KEY not set, sessions close with local fallbacks only")
        return None
    return SessionExtractor(GeminiClient(Settings.GEMINI_API_KEY, Settings.GEMINI_MODEL), analytics)
