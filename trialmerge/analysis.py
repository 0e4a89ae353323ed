"""Pre-merge analysis and duplicate detection for a trial's entries."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Tuple

from . import datastore as ds
from .records import DuplicateRecord, GroupKey, MergeAction, group_label

PRIMARY_BADGE = "✅ PRIMARY"
DUPLICATE_BADGE = "❌ DUPLICATE #{n}"


def analyze(records: Iterable[DuplicateRecord]) -> Dict[str, Any]:
    """Summarise what a merge request would do without touching the store."""
    records = list(records)
    groups: Dict[str, List[Dict[str, Any]]] = {}
    for rec in records:
        groups.setdefault(rec.key_label, []).append(rec.to_json())
    stats = {
        "total": len(records),
        "primaryEntries": sum(1 for r in records if r.action is MergeAction.KEEP),
        "toMerge": sum(1 for r in records if r.action.is_merge),
        "toDelete": sum(1 for r in records if r.action is MergeAction.DELETE_EMPTY),
        "totalSelections": sum(r.num_selections for r in records),
        "totalScores": sum(r.num_scores for r in records),
    }
    return {"stats": stats, "groups": groups}


def _primary_rank(row: Dict[str, Any]) -> Tuple[int, int, bool, str, str]:
    # Most scores, then most selections, then earliest submission
    submitted = row.get("submitted_at")
    return (
        -int(row.get("num_scores") or 0),
        -int(row.get("num_selections") or 0),
        submitted is None,
        str(submitted or ""),
        str(row.get("entry_id") or ""),
    )


def _action_for(row: Dict[str, Any]) -> MergeAction:
    if int(row.get("num_scores") or 0) > 0:
        return MergeAction.MERGE_HAS_SCORES
    if int(row.get("num_selections") or 0) > 0:
        return MergeAction.MERGE_HAS_SELECTIONS
    return MergeAction.DELETE_EMPTY


def classify_rows(rows: Iterable[Dict[str, Any]]) -> List[DuplicateRecord]:
    """Turn per-entry count rows into merge records, duplicates only.

    Rows are grouped by exact (handler, dog, registration); singleton groups
    are dropped. Within a group the best-ranked entry becomes ``KEEP`` and
    the rest are numbered duplicates in rank order.
    """
    grouped: Dict[GroupKey, List[Dict[str, Any]]] = {}
    for row in rows:
        key = (
            str(row.get("handler_name") or ""),
            str(row.get("dog_call_name") or ""),
            str(row.get("cwags_number") or ""),
        )
        grouped.setdefault(key, []).append(row)

    out: List[DuplicateRecord] = []
    for key, members in grouped.items():
        if len(members) < 2:
            continue
        ranked = sorted(members, key=_primary_rank)
        for idx, row in enumerate(ranked):
            if idx == 0:
                action, badge = MergeAction.KEEP, PRIMARY_BADGE
            else:
                action, badge = _action_for(row), DUPLICATE_BADGE.format(n=idx)
            out.append(
                DuplicateRecord(
                    handler_name=key[0],
                    dog_call_name=key[1],
                    cwags_number=key[2],
                    entry_id=str(row.get("entry_id")),
                    action=action,
                    status=badge,
                    submitted_at=row.get("submitted_at"),
                    num_selections=int(row.get("num_selections") or 0),
                    num_scores=int(row.get("num_scores") or 0),
                )
            )
    return out


def detect_duplicates(trial_id: str) -> List[DuplicateRecord]:
    return classify_rows(ds.list_trial_entry_counts(trial_id))


def group_labels(records: Iterable[DuplicateRecord]) -> List[str]:
    return list(dict.fromkeys(group_label(r.group_key) for r in records))
