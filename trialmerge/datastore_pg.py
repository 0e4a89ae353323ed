import os
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Set

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import RealDictCursor

from .errors import StoreError
from .records import Selection


_POOL: Optional[pg_pool.AbstractConnectionPool] = None


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _connect_kwargs() -> Dict[str, Any]:
    """Common connection kwargs: connect_timeout + TCP keepalives.

    Defaults:
      - connect_timeout: 10 seconds (overridable via DB_CONNECT_TIMEOUT)
      - keepalives: enabled unless DB_KEEPALIVES is 0/false
      - keepalive tunables applied if provided (IDLE/INTERVAL/COUNT)
    """
    kwargs: Dict[str, Any] = {"connect_timeout": _env_int("DB_CONNECT_TIMEOUT", 10)}

    ka_env = os.environ.get("DB_KEEPALIVES")
    if ka_env is None:
        kwargs["keepalives"] = 1
    else:
        kwargs["keepalives"] = 0 if str(ka_env).lower() in ("0", "false") else 1

    for env_name, key in (
        ("DB_KEEPALIVES_IDLE", "keepalives_idle"),
        ("DB_KEEPALIVES_INTERVAL", "keepalives_interval"),
        ("DB_KEEPALIVES_COUNT", "keepalives_count"),
    ):
        val = _env_int(env_name)
        if val is not None:
            kwargs[key] = val
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Initialize the global connection pool from DATABASE_URL.

    Repeated calls are ignored once a pool exists. Without DATABASE_URL the
    pool stays unset and callers connect directly.
    """
    global _POOL
    if _POOL is not None:
        return
    url = os.environ.get("DATABASE_URL")
    if not url:
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())


def _is_healthy(conn) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
        # The ping opens an implicit transaction when autocommit is off
        if not getattr(conn, "autocommit", False):
            conn.rollback()
        return True
    except Exception:
        return False


@contextmanager
def _get_conn():
    """Yield a pooled connection when a pool exists, else a direct one.

    Pooled connections are pinged first; a stale one is discarded and the
    checkout retried once. The connection is rolled back on error and never
    returned to the pool mid-transaction.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    if _POOL is None:
        conn = psycopg2.connect(url, **_connect_kwargs())
        try:
            try:
                yield conn
            except Exception:
                try:
                    conn.rollback()
                except Exception:
                    pass
                raise
        finally:
            try:
                conn.close()
            except Exception:
                pass
        return

    conn = None
    for _attempt in range(2):
        candidate = _POOL.getconn()
        if _is_healthy(candidate):
            conn = candidate
            break
        try:
            _POOL.putconn(candidate, close=True)
        except Exception:
            pass
    if conn is None:
        raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")

    try:
        try:
            yield conn
        except Exception:
            try:
                conn.rollback()
            except Exception:
                pass
            raise
    finally:
        try:
            # status 1 = active, 2 = intrans, 3 = inerror
            if getattr(conn, "closed", 0) == 0 and not getattr(conn, "autocommit", False):
                if getattr(conn, "status", 0) in (1, 2, 3):
                    try:
                        conn.rollback()
                    except Exception:
                        pass
        finally:
            _POOL.putconn(conn)


@contextmanager
def _store_op(what: str):
    """Translate driver failures inside the block into ``StoreError``."""
    try:
        yield
    except psycopg2.Error as exc:
        raise StoreError(f"{what}: {str(exc).strip() or type(exc).__name__}", cause=exc) from exc


def _selection_from_row(row: Dict[str, Any]) -> Selection:
    return Selection(
        id=str(row["id"]),
        entry_id=str(row["entry_id"]),
        round_id=str(row["trial_round_id"]),
        entry_type=row.get("entry_type") or "regular",
        status=row.get("entry_status"),
    )


def get_selections(entry_id: str) -> List[Selection]:
    """Return the entry's selections ordered by creation."""
    with _store_op(f"fetch selections for {entry_id}"):
        with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT id, entry_id, trial_round_id, entry_type, entry_status
                FROM entry_selections
                WHERE entry_id = %s
                ORDER BY created_at NULLS LAST, id
                """,
                (entry_id,),
            )
            return [_selection_from_row(r) for r in cur.fetchall() or []]


def get_score_count(selection_id: str) -> int:
    with _store_op(f"count scores for selection {selection_id}"):
        with _get_conn() as conn, conn.cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) FROM scores WHERE entry_selection_id = %s",
                (selection_id,),
            )
            row = cur.fetchone()
            return int(row[0]) if row else 0


def get_scored_selection_ids(selection_ids: Iterable[str]) -> Set[str]:
    """Return which of the given selections own at least one score.

    Single round-trip regardless of how many ids are passed.
    """
    ids = [str(sid) for sid in selection_ids if sid]
    if not ids:
        return set()
    with _store_op("fetch scored selections"):
        with _get_conn() as conn, conn.cursor() as cur:
            cur.execute(
                "SELECT DISTINCT entry_selection_id FROM scores WHERE entry_selection_id = ANY(%s)",
                (ids,),
            )
            return {str(r[0]) for r in cur.fetchall() or [] if r[0] is not None}


def reassign_selection(selection_id: str, new_entry_id: str) -> None:
    with _store_op(f"move selection {selection_id}"):
        with _get_conn() as conn, conn.cursor() as cur:
            cur.execute(
                "UPDATE entry_selections SET entry_id = %s WHERE id = %s",
                (new_entry_id, selection_id),
            )
            conn.commit()


def reassign_selections(selection_ids: Iterable[str], new_entry_id: str) -> None:
    ids = [str(sid) for sid in selection_ids if sid]
    if not ids:
        return
    with _store_op(f"move {len(ids)} selections to {new_entry_id}"):
        with _get_conn() as conn, conn.cursor() as cur:
            cur.execute(
                "UPDATE entry_selections SET entry_id = %s WHERE id = ANY(%s)",
                (new_entry_id, ids),
            )
            conn.commit()


def delete_selections(selection_ids: Iterable[str]) -> None:
    ids = [str(sid) for sid in selection_ids if sid]
    if not ids:
        return
    with _store_op(f"delete {len(ids)} selections"):
        with _get_conn() as conn, conn.cursor() as cur:
            cur.execute("DELETE FROM entry_selections WHERE id = ANY(%s)", (ids,))
            conn.commit()


def delete_entry(entry_id: str) -> bool:
    """Delete one entry row; returns False when it was already gone."""
    with _store_op(f"delete entry {entry_id}"):
        with _get_conn() as conn, conn.cursor() as cur:
            cur.execute("DELETE FROM entries WHERE id = %s", (entry_id,))
            deleted = (cur.rowcount or 0) > 0
            conn.commit()
    return deleted


def list_trial_entry_counts(trial_id: str) -> List[Dict[str, Any]]:
    """Return every entry of a trial with its selection and score counts."""
    out: List[Dict[str, Any]] = []
    with _store_op(f"list entries for trial {trial_id}"):
        with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT e.id, e.handler_name, e.dog_call_name, e.cwags_number, e.submitted_at,
                       COUNT(DISTINCT es.id) AS num_selections,
                       COUNT(s.id) AS num_scores
                FROM entries e
                LEFT JOIN entry_selections es ON es.entry_id = e.id
                LEFT JOIN scores s ON s.entry_selection_id = es.id
                WHERE e.trial_id = %s
                GROUP BY e.id, e.handler_name, e.dog_call_name, e.cwags_number, e.submitted_at
                ORDER BY e.handler_name, e.dog_call_name, e.submitted_at NULLS LAST, e.id
                """,
                (trial_id,),
            )
            for r in cur.fetchall() or []:
                submitted = r.get("submitted_at")
                out.append(
                    {
                        "entry_id": str(r["id"]),
                        "handler_name": r.get("handler_name") or "",
                        "dog_call_name": r.get("dog_call_name") or "",
                        "cwags_number": r.get("cwags_number") or "",
                        "submitted_at": submitted.isoformat() if hasattr(submitted, "isoformat") else submitted,
                        "num_selections": int(r.get("num_selections") or 0),
                        "num_scores": int(r.get("num_scores") or 0),
                    }
                )
    return out
