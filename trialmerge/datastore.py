from typing import Any, Dict, Iterable, List, Set

# Store gateway used by the merge core.
# Every call delegates to datastore_pg at call time so tests (and alternative
# backends) can swap the PostgreSQL functions without touching callers.

from . import datastore_pg as _pg
from .records import Selection


def get_selections(entry_id: str) -> List[Selection]:
    return _pg.get_selections(entry_id)


def get_score_count(selection_id: str) -> int:
    return _pg.get_score_count(selection_id)


def get_scored_selection_ids(selection_ids: Iterable[str]) -> Set[str]:
    return _pg.get_scored_selection_ids(list(selection_ids))


def reassign_selection(selection_id: str, new_entry_id: str) -> None:
    _pg.reassign_selection(selection_id, new_entry_id)


def reassign_selections(selection_ids: Iterable[str], new_entry_id: str) -> None:
    _pg.reassign_selections(list(selection_ids), new_entry_id)


def delete_selections(selection_ids: Iterable[str]) -> None:
    _pg.delete_selections(list(selection_ids))


def delete_entry(entry_id: str) -> bool:
    return bool(_pg.delete_entry(entry_id))


def list_trial_entry_counts(trial_id: str) -> List[Dict[str, Any]]:
    return _pg.list_trial_entry_counts(trial_id)
