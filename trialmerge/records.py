"""Input records and row types for duplicate-entry reconciliation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import InputError


GroupKey = Tuple[str, str, str]
CollisionKey = Tuple[str, str]


class MergeAction(Enum):
    """Action the caller decided for one entry of a duplicate group."""

    KEEP = "KEEP"
    MERGE_HAS_SCORES = "MERGE (has scores!)"
    MERGE_HAS_SELECTIONS = "MERGE (has selections)"
    DELETE_EMPTY = "DELETE (empty)"

    @property
    def is_merge(self) -> bool:
        return self in (MergeAction.MERGE_HAS_SCORES, MergeAction.MERGE_HAS_SELECTIONS)

    @classmethod
    def parse(cls, value: Any) -> "MergeAction":
        text = str(value or "").strip()
        for action in cls:
            if action.value == text or action.name == text:
                return action
        raise InputError(f"Unknown action '{value}'")


@dataclass
class Selection:
    """One entry_selections row: an entry's registration for a round."""

    id: str
    entry_id: str
    round_id: str
    entry_type: str = "regular"
    status: Optional[str] = None

    @property
    def collision_key(self) -> CollisionKey:
        return (self.round_id, self.entry_type)


@dataclass
class DuplicateRecord:
    handler_name: str
    dog_call_name: str
    cwags_number: str
    entry_id: str
    action: MergeAction
    status: str = ""
    submitted_at: Optional[str] = None
    num_selections: int = 0
    num_scores: int = 0

    @property
    def group_key(self) -> GroupKey:
        return (self.handler_name, self.dog_call_name, self.cwags_number)

    @property
    def key_label(self) -> str:
        return group_label(self.group_key)

    @classmethod
    def from_json(cls, raw: Any) -> "DuplicateRecord":
        if not isinstance(raw, dict):
            raise InputError("Each duplicate record must be an object")
        entry_id = raw.get("entry_id")
        if entry_id in (None, ""):
            raise InputError("Duplicate record is missing entry_id")
        cwags = raw.get("cwags_number", raw.get("registration_number"))
        return cls(
            handler_name=str(raw.get("handler_name") or ""),
            dog_call_name=str(raw.get("dog_call_name") or ""),
            cwags_number=str(cwags or ""),
            entry_id=str(entry_id),
            action=MergeAction.parse(raw.get("action")),
            status=str(raw.get("status") or ""),
            submitted_at=raw.get("submitted_at"),
            num_selections=_count(raw.get("num_selections")),
            num_scores=_count(raw.get("num_scores")),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "handler_name": self.handler_name,
            "dog_call_name": self.dog_call_name,
            "cwags_number": self.cwags_number,
            "status": self.status,
            "entry_id": self.entry_id,
            "submitted_at": self.submitted_at,
            "num_selections": self.num_selections,
            "num_scores": self.num_scores,
            "action": self.action.value,
        }


def _count(val: Any) -> int:
    try:
        return max(int(val or 0), 0)
    except (TypeError, ValueError):
        return 0


def group_label(key: GroupKey) -> str:
    return "|".join(key)


def parse_merge_request(payload: Any) -> Tuple[str, List[DuplicateRecord]]:
    """Validate a merge request body and return ``(trial_id, records)``.

    Raises ``InputError`` when the body is not an object, ``trialId`` is
    missing, ``duplicates`` is not a list, or any record is malformed.
    """
    if not isinstance(payload, dict):
        raise InputError("Invalid request: trialId and duplicates array required")
    trial_id = payload.get("trialId")
    duplicates = payload.get("duplicates")
    if not trial_id or not isinstance(duplicates, list):
        raise InputError("Invalid request: trialId and duplicates array required")
    records = [DuplicateRecord.from_json(raw) for raw in duplicates]
    return str(trial_id), records
