#!/usr/bin/env python3
"""
Database setup script for pr-watchdog.

Creates the Supabase schema programmatically using direct PostgreSQL connection.

Usage:
    python setup/setup_database.py           # Create schema
    python setup/setup_database.py --verify  # Verify existing schema
    python setup/setup_database.py --drop    # Drop and recreate (DANGEROUS)
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from utils.config_loader import load_config
from utils.logger import setup_logger

import psycopg2

logger = logging.getLogger(__name__)


CREATE_REPOSITORIES_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS repositories (
    -- GitHub repository id
    id BIGINT PRIMARY KEY,
    name TEXT NOT NULL,
    full_name TEXT,
    owner_id BIGINT  -- GitHub owner/org id, matched against teams.github_org_id
);
"""

CREATE_PULL_REQUESTS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS pull_requests (
    -- Primary Key
    id BIGSERIAL PRIMARY KEY,

    -- Identity
    repo_id BIGINT NOT NULL REFERENCES repositories(id),
    pr_number INTEGER NOT NULL,

    title TEXT NOT NULL,
    html_url TEXT,
    status TEXT NOT NULL DEFAULT 'OPEN' CHECK (status IN ('OPEN', 'CLOSED')),
    opened_at TIMESTAMPTZ NOT NULL,
    closed_at TIMESTAMPTZ,
    last_commit_at TIMESTAMPTZ NOT NULL,

    -- Review activity
    review_count INTEGER NOT NULL DEFAULT 0 CHECK (review_count >= 0),
    last_review_at TIMESTAMPTZ,
    reviewers JSONB NOT NULL DEFAULT '[]'::jsonb,

    -- Alert markers (null = not alerted in the current episode)
    stale_alert_at TIMESTAMPTZ,
    unreviewed_alert_at TIMESTAMPTZ,
    stalled_alert_at TIMESTAMPTZ,

    -- Constraints
    UNIQUE(repo_id, pr_number),
    CHECK ((status = 'CLOSED') = (closed_at IS NOT NULL))
);
"""

CREATE_TEAMS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS teams (
    id BIGSERIAL PRIMARY KEY,
    name TEXT NOT NULL,
    github_org_id BIGINT,
    slack_webhook_url TEXT,
    configs JSONB NOT NULL DEFAULT '{}'::jsonb,

    -- Integration health, written by this service
    last_github_event_at TIMESTAMPTZ,
    last_slack_sent_at TIMESTAMPTZ
);
"""

# Teams tables created before the health columns existed
ADD_TEAM_HEALTH_COLUMNS_SQL = """
ALTER TABLE teams
    ADD COLUMN IF NOT EXISTS last_github_event_at TIMESTAMPTZ,
    ADD COLUMN IF NOT EXISTS last_slack_sent_at TIMESTAMPTZ;
"""

# Atomic review counter used by SupabaseStore.increment_counter
CREATE_INCREMENT_FUNCTION_SQL = """
CREATE OR REPLACE FUNCTION increment_pull_request_counter(
    p_repo_id BIGINT,
    p_pr_number INTEGER,
    p_field TEXT,
    p_patch JSONB DEFAULT '{}'::jsonb
)
RETURNS SETOF pull_requests
LANGUAGE plpgsql
AS $$
BEGIN
    IF p_field <> 'review_count' THEN
        RAISE EXCEPTION 'Unsupported counter: %', p_field;
    END IF;

    RETURN QUERY
    UPDATE pull_requests
    SET review_count = review_count + 1,
        last_review_at = CASE
            WHEN p_patch ? 'last_review_at' THEN (p_patch->>'last_review_at')::timestamptz
            ELSE last_review_at
        END,
        reviewers = COALESCE(p_patch->'reviewers', reviewers)
    WHERE repo_id = p_repo_id AND pr_number = p_pr_number
    RETURNING *;
END;
$$;
"""

CREATE_INDEXES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_pr_status_opened_at ON pull_requests(status, opened_at);",
    "CREATE INDEX IF NOT EXISTS idx_pr_repo_id ON pull_requests(repo_id);",
    "CREATE INDEX IF NOT EXISTS idx_pr_last_commit_at ON pull_requests(last_commit_at);",
    "CREATE INDEX IF NOT EXISTS idx_repositories_owner_id ON repositories(owner_id);",
]

EXPECTED_TABLES = ["repositories", "pull_requests", "teams"]

DROP_TABLE_SQL = (
    "DROP FUNCTION IF EXISTS increment_pull_request_counter(BIGINT, INTEGER, TEXT, JSONB); "
    "DROP TABLE IF EXISTS pull_requests CASCADE; "
    "DROP TABLE IF EXISTS repositories CASCADE; "
    "DROP TABLE IF EXISTS teams CASCADE;"
)


def get_database_url(config) -> str:
    """
    Get PostgreSQL database URL.

    Uses DATABASE_URL from .env; the Supabase REST URL cannot be used for DDL.
    """
    if config.credentials.database_url:
        return config.credentials.database_url

    logger.error("DATABASE_URL not found in .env file")
    logger.error("\nTo get your DATABASE_URL:")
    logger.error("1. Go to Supabase Dashboard → Project Settings → Database")
    logger.error("2. Find 'Connection string' under 'Connection pooling'")
    logger.error("3. Copy the 'URI' connection string")
    logger.error("4. Add to .env file: DATABASE_URL=postgresql://...")
    sys.exit(1)


def create_connection(database_url: str):
    """Create a PostgreSQL database connection."""
    try:
        conn = psycopg2.connect(database_url)
        logger.info("✓ Connected to PostgreSQL database")
        return conn
    except psycopg2.Error as e:
        logger.error(f"✗ Failed to connect to database: {e}")
        logger.error("\nMake sure DATABASE_URL is correct and your IP is allowed in Supabase")
        sys.exit(1)


def execute_sql(conn, sql_statement: str, description: str) -> bool:
    """Execute a SQL statement."""
    try:
        cursor = conn.cursor()
        cursor.execute(sql_statement)
        conn.commit()
        cursor.close()
        logger.info(f"✓ {description}")
        return True
    except psycopg2.Error as e:
        logger.error(f"✗ {description} failed: {e}")
        conn.rollback()
        return False


def verify_schema(conn) -> bool:
    """Verify that the tables, indexes and counter function exist."""
    try:
        cursor = conn.cursor()

        for table in EXPECTED_TABLES:
            cursor.execute(
                "SELECT EXISTS (SELECT FROM information_schema.tables WHERE table_name = %s);",
                (table,)
            )
            if not cursor.fetchone()[0]:
                logger.error(f"✗ Table '{table}' does not exist")
                cursor.close()
                return False
            logger.info(f"✓ Table '{table}' exists")

        cursor.execute("SELECT indexname FROM pg_indexes WHERE tablename IN ('pull_requests', 'repositories');")
        indexes = [row[0] for row in cursor.fetchall()]
        for idx_sql in CREATE_INDEXES_SQL:
            idx = idx_sql.split("INDEX IF NOT EXISTS ")[1].split(" ON")[0]
            if idx in indexes:
                logger.info(f"✓ Index '{idx}' exists")
            else:
                logger.warning(f"⚠ Index '{idx}' missing")

        cursor.execute(
            "SELECT EXISTS (SELECT FROM pg_proc WHERE proname = 'increment_pull_request_counter');"
        )
        if not cursor.fetchone()[0]:
            logger.error("✗ Function 'increment_pull_request_counter' does not exist")
            cursor.close()
            return False
        logger.info("✓ Function 'increment_pull_request_counter' exists")

        cursor.close()
        return True

    except psycopg2.Error as e:
        logger.error(f"✗ Schema verification failed: {e}")
        return False


def create_schema(conn) -> bool:
    """Create the database schema."""
    logger.info("\n" + "="*80)
    logger.info("CREATING SCHEMA")
    logger.info("="*80 + "\n")

    steps = [
        (CREATE_REPOSITORIES_TABLE_SQL, "Created table 'repositories'"),
        (CREATE_PULL_REQUESTS_TABLE_SQL, "Created table 'pull_requests'"),
        (CREATE_TEAMS_TABLE_SQL, "Created table 'teams'"),
        (ADD_TEAM_HEALTH_COLUMNS_SQL, "Ensured team health columns"),
        (CREATE_INCREMENT_FUNCTION_SQL, "Created function 'increment_pull_request_counter'"),
    ]
    for statement, description in steps:
        if not execute_sql(conn, statement, description):
            return False

    for idx_sql in CREATE_INDEXES_SQL:
        idx_name = idx_sql.split("INDEX IF NOT EXISTS ")[1].split(" ON")[0]
        if not execute_sql(conn, idx_sql, f"Created index '{idx_name}'"):
            return False

    logger.info("\n✓ Database schema created successfully!")
    return True


def drop_schema(conn) -> bool:
    """Drop the existing schema (DANGEROUS)."""
    logger.warning("\n" + "="*80)
    logger.warning("⚠️  WARNING: DROPPING EXISTING SCHEMA")
    logger.warning("="*80)
    logger.warning("This will DELETE ALL tracked pull requests, repositories and teams!")

    response = input("\nType 'yes' to confirm: ")
    if response.lower() != 'yes':
        logger.info("Aborted.")
        return False

    if not execute_sql(conn, DROP_TABLE_SQL, "Dropped tables and counter function"):
        return False

    logger.info("✓ Schema dropped")
    return True


def main():
    parser = argparse.ArgumentParser(
        description="Set up database schema for pr-watchdog"
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Verify existing schema without creating"
    )
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop and recreate tables (DANGEROUS - deletes all data)"
    )

    args = parser.parse_args()

    config = load_config()
    setup_logger(config.log_level)
    logger.info("✓ Configuration loaded")

    database_url = get_database_url(config)
    conn = create_connection(database_url)

    try:
        if args.verify:
            logger.info("\n" + "="*80)
            logger.info("VERIFYING SCHEMA")
            logger.info("="*80 + "\n")

            if verify_schema(conn):
                logger.info("\n✓ Schema verification successful")
                sys.exit(0)
            else:
                logger.error("\n✗ Schema verification failed")
                sys.exit(1)

        if args.drop:
            if not drop_schema(conn):
                sys.exit(1)

        if create_schema(conn):
            logger.info("\nVerify the schema with:")
            logger.info("   python setup/setup_database.py --verify")
            sys.exit(0)
        else:
            logger.error("\n✗ Schema creation failed")
            sys.exit(1)

    finally:
        conn.close()
        logger.info("\n✓ Database connection closed")


if __name__ == "__main__":
    main()
