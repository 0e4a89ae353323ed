"""Apply score-preserving precedence when moving selections to the canonical.

Rules, per collision key ``(round_id, entry_type)``:

* a scored duplicate selection replaces an empty canonical selection, which
  is deleted first;
* when both sides hold scores nothing is touched and the conflict is
  recorded;
* an unscored duplicate selection whose key is already taken is deleted,
  otherwise it is moved.

Store failures never propagate from here: each mutating step yields a
``StepResult`` and the caller keeps going with the next selection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from . import datastore as ds
from .classify import TakenMap, partition_unscored
from .errors import StoreError
from .records import Selection

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    ok: bool
    value: Any = None
    error: Optional[str] = None


def attempt(fn: Callable[..., Any], *args: Any) -> StepResult:
    """Run one gateway call, turning ``StoreError`` into a failed result."""
    try:
        return StepResult(True, fn(*args))
    except StoreError as exc:
        return StepResult(False, error=str(exc))


@dataclass
class ResolutionTally:
    """Counters and errors produced while draining one duplicate entry."""

    moved_selections: int = 0
    deleted_selections: int = 0
    preserved_scores: int = 0
    unresolved: int = 0
    errors: List[str] = field(default_factory=list)

    def fail(self, message: str) -> None:
        logger.warning(message)
        self.errors.append(message)


def resolve_scored(
    dup_entry_id: str,
    canonical_id: str,
    selections: List[Selection],
    taken: TakenMap,
    tally: ResolutionTally,
) -> None:
    for sel in selections:
        key = sel.collision_key
        holder = taken.get(key)
        if holder is not None:
            # Re-read right before deciding; a judge may have scored it since seeding
            check = attempt(ds.get_score_count, holder)
            if not check.ok:
                tally.fail(f"Failed to check scores for round {sel.round_id} on {canonical_id}: {check.error}")
                continue
            if check.value > 0:
                tally.unresolved += 1
                tally.fail(f"Cannot merge {dup_entry_id}: both entries have scores for round {sel.round_id}")
                continue
            dropped = attempt(ds.delete_selections, [holder])
            if not dropped.ok:
                tally.fail(f"Failed to delete conflicting selection {holder} for round {sel.round_id}: {dropped.error}")
                continue
            logger.info("deleted empty canonical selection %s for round %s", holder, sel.round_id)
            tally.deleted_selections += 1
            del taken[key]

        counted = attempt(ds.get_score_count, sel.id)
        if not counted.ok:
            tally.fail(f"Failed to count scores for selection {sel.id}: {counted.error}")
            continue
        moved = attempt(ds.reassign_selection, sel.id, canonical_id)
        if not moved.ok:
            tally.fail(f"Failed to move selection {sel.id}: {moved.error}")
            continue
        taken[key] = sel.id
        tally.moved_selections += 1
        tally.preserved_scores += int(counted.value or 0)


def resolve_unscored(
    dup_entry_id: str,
    canonical_id: str,
    selections: List[Selection],
    taken: TakenMap,
    tally: ResolutionTally,
) -> None:
    conflicting, free = partition_unscored(selections, taken)

    if free:
        moved = attempt(ds.reassign_selections, [s.id for s in free], canonical_id)
        if moved.ok:
            tally.moved_selections += len(free)
            logger.info("moved %d non-conflicting selections from %s", len(free), dup_entry_id)
        else:
            for sel in free:
                if taken.get(sel.collision_key) == sel.id:
                    del taken[sel.collision_key]
            tally.fail(f"Failed to move non-conflicting selections for {dup_entry_id}: {moved.error}")

    if not conflicting:
        return
    recheck = attempt(ds.get_scored_selection_ids, [s.id for s in conflicting])
    if not recheck.ok:
        tally.fail(f"Failed to delete conflicting selections for {dup_entry_id}: {recheck.error}")
        return
    doomed = [s for s in conflicting if s.id not in recheck.value]
    for sel in conflicting:
        if sel.id in recheck.value:
            tally.unresolved += 1
            tally.fail(f"Selection {sel.id} of {dup_entry_id} was scored during merge; left in place")
    if not doomed:
        return
    dropped = attempt(ds.delete_selections, [s.id for s in doomed])
    if dropped.ok:
        tally.deleted_selections += len(doomed)
        logger.info("deleted %d conflicting empty selections from %s", len(doomed), dup_entry_id)
    else:
        tally.fail(f"Failed to delete conflicting selections for {dup_entry_id}: {dropped.error}")
