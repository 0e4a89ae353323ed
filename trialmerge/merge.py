"""Merge duplicate competition entries into one canonical entry per group.

Records arrive pre-classified by the caller (see ``MergeAction``) and are
grouped by handler name, dog call name and registration number. Each group
is processed on its own: the canonical entry is located, every duplicate is
drained into it (see ``conflicts``), and a duplicate row is deleted only once
it owns no selections. A failure inside one group is recorded against that
group and the batch moves on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from . import datastore as ds
from .classify import TakenMap, seed_taken, split_by_scores
from .conflicts import ResolutionTally, StepResult, attempt, resolve_scored, resolve_unscored
from .records import DuplicateRecord, GroupKey, MergeAction, group_label

logger = logging.getLogger(__name__)


class GroupOutcome(Enum):
    MERGED = "merged"
    PARTIALLY_MERGED = "partially_merged"
    SKIPPED_NO_CANONICAL = "skipped_no_canonical"
    FAILED = "failed"


@dataclass
class GroupReport:
    key: str
    outcome: Optional[GroupOutcome] = None
    canonical_id: Optional[str] = None
    merged_entries: int = 0
    deleted_entries: int = 0
    moved_selections: int = 0
    deleted_selections: int = 0
    preserved_scores: int = 0
    unresolved_conflicts: int = 0
    errors: List[str] = field(default_factory=list)

    def fail(self, message: str) -> None:
        logger.warning(message)
        self.errors.append(message)

    def absorb(self, tally: ResolutionTally) -> None:
        self.moved_selections += tally.moved_selections
        self.deleted_selections += tally.deleted_selections
        self.preserved_scores += tally.preserved_scores
        self.unresolved_conflicts += tally.unresolved
        self.errors.extend(tally.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "outcome": self.outcome.value if self.outcome else None,
            "canonicalId": self.canonical_id,
            "unresolvedConflicts": self.unresolved_conflicts,
            "errors": list(self.errors),
        }


@dataclass
class MergeSummary:
    total_groups: int = 0
    merged_entries: int = 0
    deleted_entries: int = 0
    moved_selections: int = 0
    deleted_selections: int = 0
    preserved_scores: int = 0
    unresolved_conflicts: int = 0
    errors: List[str] = field(default_factory=list)
    groups: List[GroupReport] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def absorb(self, report: GroupReport) -> None:
        self.merged_entries += report.merged_entries
        self.deleted_entries += report.deleted_entries
        self.moved_selections += report.moved_selections
        self.deleted_selections += report.deleted_selections
        self.preserved_scores += report.preserved_scores
        self.unresolved_conflicts += report.unresolved_conflicts
        self.errors.extend(report.errors)
        self.groups.append(report)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "totalGroups": self.total_groups,
            "mergedEntries": self.merged_entries,
            "deletedEntries": self.deleted_entries,
            "movedSelections": self.moved_selections,
            "deletedSelections": self.deleted_selections,
            "preservedScores": self.preserved_scores,
            "unresolvedConflicts": self.unresolved_conflicts,
            "errors": list(self.errors),
            "groups": [g.to_dict() for g in self.groups],
        }


def group_records(records: Iterable[DuplicateRecord]) -> Dict[GroupKey, List[DuplicateRecord]]:
    """Group records by exact (handler, dog, registration) in first-seen order."""
    groups: Dict[GroupKey, List[DuplicateRecord]] = {}
    for rec in records:
        groups.setdefault(rec.group_key, []).append(rec)
    return groups


class _CanonicalState:
    """Lazily loaded view of the canonical entry's selections for one group."""

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        self.taken: Optional[TakenMap] = None

    def taken_map(self) -> StepResult:
        if self.taken is None:
            fetched = attempt(ds.get_selections, self.entry_id)
            if not fetched.ok:
                return fetched
            self.taken = seed_taken(fetched.value or [])
        return StepResult(True, self.taken)


def _delete_drained(dup: DuplicateRecord, report: GroupReport, merged: bool) -> None:
    deleted = attempt(ds.delete_entry, dup.entry_id)
    if not deleted.ok:
        report.fail(f"Failed to delete entry {dup.entry_id}: {deleted.error}")
        return
    if not deleted.value:
        logger.info("entry %s already gone", dup.entry_id)
        return
    report.deleted_entries += 1
    if merged:
        report.merged_entries += 1
    logger.info("deleted %s entry %s", "merged" if merged else "empty", dup.entry_id)


def merge_duplicate(dup: DuplicateRecord, canonical: _CanonicalState, report: GroupReport) -> None:
    """Drain one duplicate entry into the canonical and delete it when empty."""
    listed = attempt(ds.get_selections, dup.entry_id)
    if not listed.ok:
        report.fail(f"Failed to fetch selections for {dup.entry_id}: {listed.error}")
        return
    selections = listed.value or []
    if not selections:
        _delete_drained(dup, report, merged=False)
        return
    if dup.action is MergeAction.DELETE_EMPTY:
        logger.warning("entry %s marked empty but owns %d selections; merging instead", dup.entry_id, len(selections))

    loaded = canonical.taken_map()
    if not loaded.ok:
        report.fail(f"Failed to fetch selections for {canonical.entry_id}: {loaded.error}")
        return
    taken = loaded.value

    scored = attempt(ds.get_scored_selection_ids, [s.id for s in selections])
    if not scored.ok:
        report.fail(f"Failed to fetch scores for {dup.entry_id}: {scored.error}")
        return
    with_scores, without_scores = split_by_scores(selections, scored.value or set())
    logger.info(
        "entry %s: %d selections with scores, %d without",
        dup.entry_id, len(with_scores), len(without_scores),
    )

    tally = ResolutionTally()
    resolve_scored(dup.entry_id, canonical.entry_id, with_scores, taken, tally)
    resolve_unscored(dup.entry_id, canonical.entry_id, without_scores, taken, tally)
    report.absorb(tally)

    remaining = attempt(ds.get_selections, dup.entry_id)
    if not remaining.ok:
        report.fail(f"Failed to verify {dup.entry_id} is empty: {remaining.error}")
        return
    if remaining.value:
        report.fail(f"Entry {dup.entry_id} left in place: {len(remaining.value)} selection(s) could not be merged")
        return
    _delete_drained(dup, report, merged=True)


def merge_group(records: List[DuplicateRecord], report: GroupReport) -> GroupReport:
    """Process one duplicate group, recording results on ``report``."""
    primaries = [r for r in records if r.action is MergeAction.KEEP]
    if not primaries:
        report.fail(f"No primary entry for {report.key}")
        report.outcome = GroupOutcome.SKIPPED_NO_CANONICAL
        return report

    primary = primaries[0]
    report.canonical_id = primary.entry_id
    for extra in primaries[1:]:
        logger.warning("group %s: ignoring additional KEEP entry %s", report.key, extra.entry_id)

    seen = {primary.entry_id}
    duplicates: List[DuplicateRecord] = []
    for rec in records:
        if rec.action is MergeAction.KEEP or rec.entry_id in seen:
            continue
        seen.add(rec.entry_id)
        duplicates.append(rec)
    logger.info("group %s: primary %s, %d duplicates", report.key, primary.entry_id, len(duplicates))

    canonical = _CanonicalState(primary.entry_id)
    for dup in duplicates:
        merge_duplicate(dup, canonical, report)

    # Store failures leave selections behind just like unresolvable conflicts
    partial = report.unresolved_conflicts > 0 or bool(report.errors)
    report.outcome = GroupOutcome.PARTIALLY_MERGED if partial else GroupOutcome.MERGED
    return report


def run_batch(records: Iterable[DuplicateRecord]) -> MergeSummary:
    """Merge every duplicate group; never raises for a per-group failure."""
    groups = group_records(records)
    summary = MergeSummary(total_groups=len(groups))
    for key, members in groups.items():
        report = GroupReport(key=group_label(key))
        try:
            merge_group(members, report)
        except Exception as exc:
            logger.exception("error processing group %s", report.key)
            report.outcome = GroupOutcome.FAILED
            report.errors.append(f"Error processing {report.key}: {exc}")
        summary.absorb(report)

    logger.info(
        "merge_summary groups=%d merged=%d deleted=%d moved=%d deleted_selections=%d preserved_scores=%d errors=%d",
        summary.total_groups,
        summary.merged_entries,
        summary.deleted_entries,
        summary.moved_selections,
        summary.deleted_selections,
        summary.preserved_scores,
        len(summary.errors),
    )
    return summary
