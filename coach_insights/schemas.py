"""
Coach Insights Schemas
======================

Pydantic models for every artifact the session pipeline persists.
Persisted JSON uses camelCase keys (createdAt, sourceSessionId, ...).

Outcome variants form a closed union discriminated by `kind`.
"""
from pydantic import BaseModel, ConfigDict, Field, ValidationError, TypeAdapter
from typing import Optional, List, Dict, Any, Union, Literal, Annotated
from enum import Enum
from datetime import datetime, timezone
import time
import uuid
import logging


class CoachType(str, Enum):
    FOCUS = "Focus Coach"
    DECISION = "Decision Coach"
    REFLECTION = "Reflection Coach"

    @property
    def short_name(self) -> str:
        return self.value.replace(" Coach", "")


class OutcomeKind(str, Enum):
    FOCUS = "focus"
    DECISION = "decision"
    REFLECTION = "reflection"


COACH_OUTCOME_KIND = {
    CoachType.FOCUS: OutcomeKind.FOCUS,
    CoachType.DECISION: OutcomeKind.DECISION,
    CoachType.REFLECTION: OutcomeKind.REFLECTION,
}


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ReportSource(str, Enum):
    AI = "ai"
    FALLBACK = "fallback"


class ReportQualityStatus(str, Enum):
    ACCEPTED_AI = "accepted_ai"
    REJECTED_AI_FALLBACK = "rejected_ai_fallback"
    FALLBACK_ONLY = "fallback_only"


class ReportFeedback(str, Enum):
    USEFUL = "useful"
    NOT_USEFUL = "not_useful"


class MemoryItemType(str, Enum):
    VALUE = "value"
    THEME = "theme"
    PATTERN = "pattern"


class MemorySource(str, Enum):
    SYSTEM = "system"
    USER = "user"


class CamelModel(BaseModel):
    """Base for persisted records: camelCase on disk, snake_case in code."""
    model_config = ConfigDict(populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# ============ Transcript ============

class ChatMessage(CamelModel):
    role: ChatRole
    content: str
    id: Optional[str] = None
    is_opening: bool = Field(default=False, alias="isOpening")
    is_error: bool = Field(default=False, alias="isError")


# ============ Outcomes ============

class FocusOutcome(CamelModel):
    kind: Literal["focus"] = "focus"
    priority: str
    first_step: str = Field(alias="firstStep")
    is_completed: bool = Field(default=False, alias="isCompleted")


class DecisionOutcome(CamelModel):
    kind: Literal["decision"] = "decision"
    decision: str
    tradeoff_accepted: str = Field(alias="tradeoffAccepted")


class ReflectionOutcome(CamelModel):
    kind: Literal["reflection"] = "reflection"
    insight: str
    question_to_carry: str = Field(alias="questionToCarry")


SessionOutcome = Annotated[
    Union[FocusOutcome, DecisionOutcome, ReflectionOutcome],
    Field(discriminator="kind"),
]

_outcome_adapter = TypeAdapter(SessionOutcome)


def outcome_kind(outcome) -> OutcomeKind:
    return OutcomeKind(outcome.kind)


def outcome_primary(outcome) -> str:
    """The first sentence slot of an outcome (priority / decision / insight)."""
    return _PRIMARY[outcome_kind(outcome)](outcome)


def outcome_secondary(outcome) -> str:
    """The second sentence slot (first step / tradeoff / question)."""
    return _SECONDARY[outcome_kind(outcome)](outcome)


_PRIMARY = {
    OutcomeKind.FOCUS: lambda o: o.priority,
    OutcomeKind.DECISION: lambda o: o.decision,
    OutcomeKind.REFLECTION: lambda o: o.insight,
}

_SECONDARY = {
    OutcomeKind.FOCUS: lambda o: o.first_step,
    OutcomeKind.DECISION: lambda o: o.tradeoff_accepted,
    OutcomeKind.REFLECTION: lambda o: o.question_to_carry,
}


def parse_outcome_candidate(raw: Any):
    """
    Parse an untrusted outcome blob from the completion service.
    Returns None when it does not describe one of the three variants.
    """
    if raw is None:
        return None
    if isinstance(raw, (FocusOutcome, DecisionOutcome, ReflectionOutcome)):
        return raw
    try:
        return _outcome_adapter.validate_python(raw)
    except ValidationError as e:
        logging.warning(f"Discarding malformed outcome candidate: {e.error_count()} errors")
        return None


class SessionOutcomeCard(CamelModel):
    id: str
    coach: CoachType
    created_at: str = Field(alias="createdAt")
    source_session_id: str = Field(alias="sourceSessionId")
    data: SessionOutcome
    archived_at: Optional[str] = Field(default=None, alias="archivedAt")


class HistoryMessage(CamelModel):
    role: ChatRole
    content: str


class SessionHistoryEntry(CamelModel):
    id: str
    coach: CoachType
    started_at: str = Field(alias="startedAt")
    ended_at: str = Field(alias="endedAt")
    messages: List[HistoryMessage]
    outcome_id: Optional[str] = Field(default=None, alias="outcomeId")


# ============ Reports ============

class ReportCandidate(CamelModel):
    """Untrusted report proposal; validated before the quality gate sees it."""
    summary: str
    pattern: str
    next_check_in_prompt: str = Field(alias="nextCheckInPrompt")
    confidence: float = Field(allow_inf_nan=False)


def parse_report_candidate(raw: Any) -> Optional[ReportCandidate]:
    if raw is None:
        return None
    if isinstance(raw, ReportCandidate):
        return raw
    try:
        return ReportCandidate.model_validate(raw)
    except ValidationError as e:
        logging.warning(f"Discarding malformed report candidate: {e.error_count()} errors")
        return None


class SessionReportCard(CamelModel):
    id: str
    created_at: str = Field(alias="createdAt")
    coach: CoachType
    source_session_id: str = Field(alias="sourceSessionId")
    source_outcome_id: str = Field(alias="sourceOutcomeId")
    summary: str
    pattern: str
    next_check_in_prompt: str = Field(alias="nextCheckInPrompt")
    confidence: float = Field(ge=0.0, le=1.0)
    source: ReportSource
    quality_status: Optional[ReportQualityStatus] = Field(default=None, alias="qualityStatus")
    usefulness_feedback: Optional[ReportFeedback] = Field(default=None, alias="usefulnessFeedback")


class WeeklySummaryCard(CamelModel):
    id: str
    created_at: str = Field(alias="createdAt")
    week_start_iso: str = Field(alias="weekStartISO")
    week_end_iso: str = Field(alias="weekEndISO")
    summary: str


# ============ Memory ============

class MemoryItem(CamelModel):
    id: str
    label: str
    type: MemoryItemType
    source: MemorySource
    updated_at: str = Field(alias="updatedAt")


# ============ Analytics ============

class AnalyticsEvent(CamelModel):
    id: str
    name: str
    created_at: str = Field(alias="createdAt")
    payload: Optional[Dict[str, Any]] = None


# ============ Timeline ============

class TimelineItem(CamelModel):
    id: str
    type: Literal["outcome", "weekly-summary", "session-report"]
    created_at: str = Field(alias="createdAt")
    outcome: Optional[SessionOutcomeCard] = None
    summary: Optional[WeeklySummaryCard] = None
    report: Optional[SessionReportCard] = None


def create_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


def utc_now_iso(now: Optional[datetime] = None) -> str:
    """ISO-8601 timestamp in UTC with millisecond precision."""
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp; naive values are treated as UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def iso_sort_key(value: Optional[str]) -> datetime:
    return parse_iso(value) or EPOCH
