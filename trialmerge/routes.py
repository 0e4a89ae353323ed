from flask import Blueprint, current_app, request
import os

from .analysis import analyze, detect_duplicates, group_labels
from .errors import InputError, StoreError
from .merge import run_batch
from .records import parse_merge_request


bp = Blueprint('main', __name__)

_MERGE_TABLES = ('entries', 'entry_selections', 'scores')

# (label, table, accepted leading column lists, suggested statement)
_RECOMMENDED_INDEXES = [
    (
        'entries(trial_id)',
        'entries',
        ['trial_id', 'trial_id, handler_name, dog_call_name'],
        'CREATE INDEX CONCURRENTLY IF NOT EXISTS idx_entries_trial ON public.entries(trial_id);',
    ),
    (
        'entry_selections(entry_id)',
        'entry_selections',
        ['entry_id', 'entry_id, trial_round_id, entry_type'],
        'CREATE INDEX CONCURRENTLY IF NOT EXISTS idx_selections_entry ON public.entry_selections(entry_id);',
    ),
    (
        'entry_selections(entry_id,trial_round_id,entry_type)',
        'entry_selections',
        ['entry_id, trial_round_id, entry_type'],
        'CREATE UNIQUE INDEX CONCURRENTLY IF NOT EXISTS uq_selections_entry_round_type '
        'ON public.entry_selections(entry_id, trial_round_id, entry_type);',
    ),
    (
        'scores(entry_selection_id)',
        'scores',
        ['entry_selection_id'],
        'CREATE INDEX CONCURRENTLY IF NOT EXISTS idx_scores_selection ON public.scores(entry_selection_id);',
    ),
]


@bp.route('/health/db')
def health_db():
    """Database connectivity health check.

    Always returns HTTP 200 with a JSON body describing connection status.
    """
    url = os.environ.get('DATABASE_URL')
    if not url:
        return {
            'connected': False,
            'status': 'no_database_url',
            'message': 'DATABASE_URL is not set.',
        }
    try:
        import psycopg2  # type: ignore
        with psycopg2.connect(url, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute('SELECT current_user, current_database(), version()')
                user, db, ver = cur.fetchone()
        return {
            'connected': True,
            'status': 'ok',
            'user': user,
            'database': db,
            'server_version': (ver or '').split('\n')[0],
        }
    except Exception as e:  # pragma: no cover - best-effort health output
        return {
            'connected': False,
            'status': 'error',
            'error': str(e),
        }


@bp.route('/health/indexes')
def health_indexes():
    """Report presence of the indexes the merge queries rely on."""
    url = os.environ.get('DATABASE_URL')
    if not url:
        return {
            'connected': False,
            'status': 'no_database_url',
            'message': 'DATABASE_URL is not set; cannot inspect PostgreSQL indexes.'
        }
    try:
        import psycopg2  # type: ignore
        with psycopg2.connect(url, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT tablename, indexname, indexdef
                    FROM pg_indexes
                    WHERE schemaname = 'public' AND tablename = ANY(%s)
                    ORDER BY tablename, indexname
                    """,
                    (list(_MERGE_TABLES),),
                )
                idx = cur.fetchall()
    except Exception as e:  # pragma: no cover
        return {
            'connected': False,
            'status': 'error',
            'error': str(e),
        }
    checks = index_report(idx)
    missing = [label for label, present in checks.items() if not present]
    suggestions = [sql for label, _t, _c, sql in _RECOMMENDED_INDEXES if label in missing]
    return {
        'connected': True,
        'status': 'ok',
        'indexes_present': checks,
        'missing': missing,
        'suggestions': suggestions,
    }


def index_report(idx: list) -> dict[str, bool]:
    """Map each recommended index label to whether ``idx`` rows cover it.

    ``idx`` rows are ``(tablename, indexname, indexdef)`` from pg_indexes.
    """
    def has_index(table: str, cols: str) -> bool:
        cols_norm = cols.replace(' ', '')
        for t, _name, defn in idx:
            if t != table:
                continue
            d = (defn or '').lower().replace(' ', '')
            if f'({cols_norm})' in d:
                return True
        return False

    return {
        label: any(has_index(table, cols) for cols in accepted)
        for label, table, accepted, _sql in _RECOMMENDED_INDEXES
    }


@bp.route('/api/admin/merge-duplicates', methods=['POST'])
def merge_duplicates():
    """Merge caller-classified duplicate entries into their canonical entries.

    Per-group failures come back as HTTP 200 with ``success: false`` and a
    populated ``errors`` list; only failures outside the per-group boundary
    produce a 500.
    """
    try:
        trial_id, records = parse_merge_request(request.get_json(silent=True))
    except InputError as e:
        return {'error': str(e)}, 400
    current_app.logger.info("merge_start trial=%s entries=%d", trial_id, len(records))
    try:
        summary = run_batch(records)
    except Exception as e:
        current_app.logger.exception("Merge operation failed for trial %s", trial_id)
        return {'error': str(e) or type(e).__name__}, 500
    return summary.to_dict()


@bp.route('/api/admin/merge-duplicates/analyze', methods=['POST'])
def analyze_duplicates():
    """Preview counts for a merge request without mutating anything."""
    try:
        _trial_id, records = parse_merge_request(request.get_json(silent=True))
    except InputError as e:
        return {'error': str(e)}, 400
    return analyze(records)


@bp.route('/api/admin/trials/<trial_id>/duplicates')
def trial_duplicates(trial_id):
    """List a trial's duplicate entries, classified for the merge endpoint."""
    try:
        records = detect_duplicates(trial_id)
    except StoreError as e:
        current_app.logger.exception("Duplicate detection failed for trial %s", trial_id)
        return {'error': str(e)}, 500
    return {
        'trialId': trial_id,
        'totalGroups': len(group_labels(records)),
        'duplicates': [r.to_json() for r in records],
    }
