#!/usr/bin/env python3
"""
Create the entries / entry_selections / scores tables the merge service uses.

Safe to re-run: every statement is IF NOT EXISTS.
"""
import os
import psycopg2


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS entries (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        trial_id TEXT NOT NULL,
        handler_name VARCHAR(200) NOT NULL,
        dog_call_name VARCHAR(200) NOT NULL,
        cwags_number VARCHAR(50),
        entry_status VARCHAR(20) NOT NULL DEFAULT 'confirmed',
        submitted_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS entry_selections (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        entry_id TEXT NOT NULL REFERENCES entries(id) ON DELETE CASCADE,
        trial_round_id TEXT NOT NULL,
        entry_type VARCHAR(10) NOT NULL DEFAULT 'regular'
            CHECK (entry_type IN ('regular', 'feo')),
        entry_status VARCHAR(20) NOT NULL DEFAULT 'confirmed'
            CHECK (entry_status IN ('confirmed', 'withdrawn', 'no_show')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (entry_id, trial_round_id, entry_type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scores (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        entry_selection_id TEXT NOT NULL REFERENCES entry_selections(id) ON DELETE RESTRICT,
        trial_round_id TEXT,
        pass_fail VARCHAR(10),
        scored_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_entries_trial ON entries(trial_id)",
    "CREATE INDEX IF NOT EXISTS idx_selections_entry ON entry_selections(entry_id)",
    "CREATE INDEX IF NOT EXISTS idx_scores_selection ON scores(entry_selection_id)",
]


def create_tables(conn):
    """Create the database schema"""
    with conn.cursor() as cur:
        for sql in SCHEMA_STATEMENTS:
            cur.execute(sql)
    conn.commit()
    print("Database schema created successfully")


def table_counts(conn):
    counts = {}
    with conn.cursor() as cur:
        for table in ("entries", "entry_selections", "scores"):
            cur.execute(f"SELECT COUNT(*) FROM {table}")
            counts[table] = cur.fetchone()[0]
    return counts


def main():
    database_url = os.environ.get('DATABASE_URL')
    if not database_url:
        print("ERROR: DATABASE_URL environment variable not set")
        return 1

    conn = None
    try:
        conn = psycopg2.connect(database_url)
        print("Connected to PostgreSQL database")
        create_tables(conn)
        print("\nSummary:")
        for table, count in table_counts(conn).items():
            print(f"- {count} {table}")
        return 0
    except psycopg2.Error as e:
        print(f"Error during schema setup: {e}")
        return 1
    finally:
        if conn is not None:
            conn.close()


if __name__ == "__main__":
    raise SystemExit(main())
