"""
Memory Synthesis Engine
=======================

A deduplicated, slowly growing profile of durable facts about the user.

Progressive disclosure by total outcome count:
- Stage 1 (< 5 outcomes): literal theme from the outcome's first sentence
- Stage 2 (5-8): adds a pattern from the second sentence
- Stage 3 (>= 9): adds a cross-session trajectory pattern when enough
  sessions of the same coach support it

System items are deduplicated by (type, normalized label). User items are
never deduplicated. Dismissed patterns stay stored but are hidden from the
active view until restored.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional
import json
import logging

from coach_insights.policy import DEFAULT_POLICY, InsightPolicy
from coach_insights.schemas import (
    MemoryItem, MemoryItemType, MemorySource, OutcomeKind, SessionOutcomeCard,
    create_id, iso_sort_key, outcome_kind, utc_now_iso,
)
from coach_insights.store import KeyValueStore, dump_json_array, read_json_array
from coach_insights.text_heuristics import normalize_label

MEMORY_ENABLED_KEY = "coach.memory.enabled"
MEMORY_ITEMS_KEY = "coach.memory.items"
MEMORY_DISMISSED_KEY = "coach.memory.dismissedPatterns"


@dataclass
class MemoryCandidate:
    type: MemoryItemType
    label: str


THEME_PREFIX = {
    OutcomeKind.FOCUS: "Current priority",
    OutcomeKind.DECISION: "Decision direction",
    OutcomeKind.REFLECTION: "Recurring insight",
}

PATTERN_PREFIX = {
    OutcomeKind.FOCUS: "Action tendency",
    OutcomeKind.DECISION: "Accepted tradeoff pattern",
    OutcomeKind.REFLECTION: "Question carried forward",
}

TRAJECTORY_LABEL = {
    OutcomeKind.FOCUS: "Trajectory: several focus priorities are still open at once; closing one may matter more than adding another.",
    OutcomeKind.DECISION: "Trajectory: decisions keep coming back to coaching; you are building a habit of choosing under tradeoffs.",
    OutcomeKind.REFLECTION: "Trajectory: reflection sessions keep circling back to questions that deserve a slower look.",
}


def memory_stage(outcome_count: int, policy: InsightPolicy = DEFAULT_POLICY) -> int:
    if outcome_count >= policy.memory_stage_three_at:
        return 3
    if outcome_count >= policy.memory_stage_two_at:
        return 2
    return 1


def dismissal_key(label: str, policy: InsightPolicy = DEFAULT_POLICY) -> str:
    return normalize_label(label, policy.max_memory_label_chars).lower()


def _trajectory_candidate(
    outcome_card: SessionOutcomeCard,
    outcomes: List[SessionOutcomeCard],
    policy: InsightPolicy,
) -> Optional[MemoryCandidate]:
    kind = outcome_kind(outcome_card.data)
    same_kind = [o for o in outcomes if outcome_kind(o.data) == kind]

    if kind == OutcomeKind.FOCUS:
        open_focus = [o for o in same_kind if not o.data.is_completed and not o.archived_at]
        supported = len(open_focus) >= policy.focus_trajectory_min_open
    else:
        prior = [o for o in same_kind if o.id != outcome_card.id]
        minimum = (
            policy.decision_trajectory_min_prior if kind == OutcomeKind.DECISION
            else policy.reflection_trajectory_min_prior
        )
        supported = len(prior) >= minimum

    if not supported:
        return None
    return MemoryCandidate(MemoryItemType.PATTERN, TRAJECTORY_LABEL[kind])


def build_outcome_memories(
    outcome_card: SessionOutcomeCard,
    outcomes: List[SessionOutcomeCard],
    policy: InsightPolicy = DEFAULT_POLICY,
) -> List[MemoryCandidate]:
    """Candidate memories for one outcome, gated by the disclosure stage."""
    data = outcome_card.data
    kind = outcome_kind(data)
    stage = memory_stage(len(outcomes), policy)

    if kind == OutcomeKind.FOCUS:
        primary, secondary = data.priority, data.first_step
    elif kind == OutcomeKind.DECISION:
        primary, secondary = data.decision, data.tradeoff_accepted
    else:
        primary, secondary = data.insight, data.question_to_carry

    candidates = [MemoryCandidate(MemoryItemType.THEME, f"{THEME_PREFIX[kind]}: {primary}")]
    if stage >= 2:
        candidates.append(MemoryCandidate(MemoryItemType.PATTERN, f"{PATTERN_PREFIX[kind]}: {secondary}"))
    if stage >= 3:
        trajectory = _trajectory_candidate(outcome_card, outcomes, policy)
        if trajectory:
            candidates.append(trajectory)
    return candidates


def upsert_system_memory(
    items: List[MemoryItem],
    label: str,
    item_type: MemoryItemType,
    now_iso: str,
    policy: InsightPolicy = DEFAULT_POLICY,
) -> List[MemoryItem]:
    normalized = normalize_label(label, policy.max_memory_label_chars)
    if not normalized:
        return items

    for item in items:
        if item.source == MemorySource.SYSTEM and item.type == item_type and item.label == normalized:
            return [
                i.model_copy(update={"updated_at": now_iso}) if i.id == item.id else i
                for i in items
            ]

    new_item = MemoryItem(
        id=create_id("memory"),
        label=normalized,
        type=item_type,
        source=MemorySource.SYSTEM,
        updated_at=now_iso,
    )
    return [new_item] + items


def cap_items(items: List[MemoryItem], policy: InsightPolicy = DEFAULT_POLICY) -> List[MemoryItem]:
    ordered = sorted(items, key=lambda i: iso_sort_key(i.updated_at), reverse=True)
    return ordered[:policy.memory_max_items]


class MemoryEngine:
    """Persists memory items, the enabled flag and dismissed pattern labels."""

    def __init__(self, store: KeyValueStore, policy: InsightPolicy = DEFAULT_POLICY):
        self.store = store
        self.policy = policy

    # ============ Enabled flag ============

    def is_enabled(self) -> bool:
        try:
            return self.store.get(MEMORY_ENABLED_KEY) != "0"
        except Exception as e:
            logging.warning(f"Could not read memory flag, assuming enabled: {e}")
            return True

    def set_enabled(self, enabled: bool):
        self.store.set(MEMORY_ENABLED_KEY, "1" if enabled else "0")

    # ============ Reads ============

    def _decode(self, raw: Optional[str]) -> List[MemoryItem]:
        items = []
        for entry in read_json_array(raw, MEMORY_ITEMS_KEY):
            try:
                items.append(MemoryItem.model_validate(entry))
            except ValueError as e:
                logging.warning(f"Skipping malformed memory item: {e}")
        return items

    def _encode(self, items: List[MemoryItem]) -> str:
        return dump_json_array([i.to_json_dict() for i in items])

    def get_items(self) -> List[MemoryItem]:
        items = self._decode(self.store.get(MEMORY_ITEMS_KEY))
        return sorted(items, key=lambda i: iso_sort_key(i.updated_at), reverse=True)

    def get_dismissed_labels(self) -> List[str]:
        return [
            label for label in read_json_array(self.store.get(MEMORY_DISMISSED_KEY), MEMORY_DISMISSED_KEY)
            if isinstance(label, str)
        ]

    def get_active_items(self) -> List[MemoryItem]:
        dismissed = set(self.get_dismissed_labels())
        return [
            item for item in self.get_items()
            if not (item.type == MemoryItemType.PATTERN and dismissal_key(item.label, self.policy) in dismissed)
        ]

    # ============ Writes ============

    def _mutate_items(self, mutator: Callable[[List[MemoryItem]], List[MemoryItem]]) -> List[MemoryItem]:
        result: List[List[MemoryItem]] = []

        def apply(raw: Optional[str]) -> str:
            next_items = mutator(self._decode(raw))
            result.append(next_items)
            return self._encode(next_items)

        self.store.update(MEMORY_ITEMS_KEY, apply)
        return result[0]

    def sync_from_outcome(
        self,
        outcome_card: SessionOutcomeCard,
        outcomes: List[SessionOutcomeCard],
        now: Optional[datetime] = None,
    ) -> List[MemoryItem]:
        """
        Upsert stage-gated memories for a committed outcome.
        Returns the stored item list (empty when memory is disabled).
        """
        if not self.is_enabled():
            return []

        now_iso = utc_now_iso(now)
        candidates = build_outcome_memories(outcome_card, outcomes, self.policy)

        def apply(items: List[MemoryItem]) -> List[MemoryItem]:
            for candidate in candidates:
                items = upsert_system_memory(items, candidate.label, candidate.type, now_iso, self.policy)
            return cap_items(items, self.policy)

        items = self._mutate_items(apply)
        logging.info(
            f"Memory synced from outcome {outcome_card.id}: stage {memory_stage(len(outcomes), self.policy)}, "
            f"{len(candidates)} candidates, {len(items)} stored"
        )
        return items

    def add_manual_item(self, label: str, item_type: MemoryItemType = MemoryItemType.VALUE) -> Optional[MemoryItem]:
        normalized = normalize_label(label, self.policy.max_memory_label_chars)
        if not normalized:
            return None

        new_item = MemoryItem(
            id=create_id("memory"),
            label=normalized,
            type=MemoryItemType(item_type),
            source=MemorySource.USER,
            updated_at=utc_now_iso(),
        )
        self._mutate_items(lambda items: cap_items([new_item] + items, self.policy))
        return new_item

    def update_item(self, memory_id: str, updater: Callable[[MemoryItem], MemoryItem]) -> List[MemoryItem]:
        return self._mutate_items(
            lambda items: [updater(i) if i.id == memory_id else i for i in items]
        )

    def edit_label(self, memory_id: str, label: str) -> Optional[MemoryItem]:
        normalized = normalize_label(label, self.policy.max_memory_label_chars)
        if not normalized:
            return None
        now_iso = utc_now_iso()
        items = self.update_item(
            memory_id, lambda i: i.model_copy(update={"label": normalized, "updated_at": now_iso})
        )
        return next((i for i in items if i.id == memory_id), None)

    def delete_item(self, memory_id: str) -> List[MemoryItem]:
        return self._mutate_items(lambda items: [i for i in items if i.id != memory_id])

    # ============ Dismiss / restore ============

    def dismiss_pattern(self, memory_id: str) -> bool:
        """Hide a pattern item from the active view without deleting it."""
        item = next((i for i in self.get_items() if i.id == memory_id), None)
        if item is None or item.type != MemoryItemType.PATTERN:
            return False

        key = dismissal_key(item.label, self.policy)

        def add(raw: Optional[str]) -> Optional[str]:
            labels = [l for l in read_json_array(raw, MEMORY_DISMISSED_KEY) if isinstance(l, str)]
            if key in labels:
                return None
            return json.dumps(labels + [key], ensure_ascii=False)

        self.store.update(MEMORY_DISMISSED_KEY, add)
        return True

    def restore_pattern(self, label: str) -> bool:
        key = dismissal_key(label, self.policy)
        removed: List[bool] = []

        def drop(raw: Optional[str]) -> Optional[str]:
            labels = [l for l in read_json_array(raw, MEMORY_DISMISSED_KEY) if isinstance(l, str)]
            if key not in labels:
                return None
            removed.append(True)
            return json.dumps([l for l in labels if l != key], ensure_ascii=False)

        self.store.update(MEMORY_DISMISSED_KEY, drop)
        return bool(removed)
