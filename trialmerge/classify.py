"""Partition a duplicate entry's selections against the canonical entry.

The canonical's selections are reduced to a ``taken`` map of collision key
``(round_id, entry_type)`` -> owning selection id. The map is local to one
group and is updated as conflicts are resolved, so later decisions see the
canonical's current state without another store round-trip.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Set, Tuple

from .records import CollisionKey, Selection

TakenMap = Dict[CollisionKey, str]


def seed_taken(canonical_selections: Iterable[Selection]) -> TakenMap:
    taken: TakenMap = {}
    for sel in canonical_selections:
        taken.setdefault(sel.collision_key, sel.id)
    return taken


def split_by_scores(selections: Iterable[Selection], scored_ids: Set[str]) -> Tuple[List[Selection], List[Selection]]:
    """Return ``(with_scores, without_scores)`` preserving input order."""
    with_scores: List[Selection] = []
    without_scores: List[Selection] = []
    for sel in selections:
        if sel.id in scored_ids:
            with_scores.append(sel)
        else:
            without_scores.append(sel)
    return with_scores, without_scores


def partition_unscored(selections: Iterable[Selection], taken: TakenMap) -> Tuple[List[Selection], List[Selection]]:
    """Split unscored selections into ``(conflicting, free)``.

    Must run after every scored selection of the same duplicate has been
    resolved. A free selection claims its key in ``taken`` so a second
    selection with the same key is treated as conflicting.
    """
    conflicting: List[Selection] = []
    free: List[Selection] = []
    for sel in selections:
        key = sel.collision_key
        if key in taken:
            conflicting.append(sel)
        else:
            taken[key] = sel.id
            free.append(sel)
    return conflicting, free
