"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17

"""
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS work_items (
          id                UUID PRIMARY KEY,
          region            VARCHAR(15) NOT NULL,
          source_branch     VARCHAR(30) NOT NULL,
          external_id       TEXT NOT NULL,
          slug              TEXT NOT NULL,
          title             TEXT,
          scheduled_date    TIMESTAMPTZ,
          source_page_url   TEXT,
          direct_media_url  TEXT,
          storage_locator   TEXT,
          status            VARCHAR(20) NOT NULL DEFAULT 'pending',
          retry_count       INTEGER NOT NULL DEFAULT 0,
          last_error        TEXT,
          created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
          CONSTRAINT work_items_valid_status CHECK (status IN (
            'queued', 'pending', 'downloading', 'downloaded',
            'transcribing', 'completed', 'failed', 'permanent_failure'
          )),
          CONSTRAINT work_items_identity_uq UNIQUE (region, source_branch, external_id),
          CONSTRAINT work_items_slug_uq UNIQUE (slug)
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS work_items_region_branch_status_idx "
        "ON work_items (region, source_branch, status);"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS transcripts (
          id            UUID PRIMARY KEY,
          work_item_id  UUID NOT NULL REFERENCES work_items(id) ON DELETE CASCADE,
          provider      TEXT,
          language      TEXT,
          text          TEXT,
          raw_payload   JSONB,
          created_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
          CONSTRAINT transcripts_work_item_uq UNIQUE (work_item_id)
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS job_runs (
          id                UUID PRIMARY KEY,
          region            VARCHAR(15) NOT NULL,
          source_branch     VARCHAR(30) NOT NULL,
          executor          VARCHAR(100) NOT NULL,
          start_time        TIMESTAMPTZ NOT NULL DEFAULT now(),
          end_time          TIMESTAMPTZ,
          status            VARCHAR(30) NOT NULL DEFAULT 'running',
          items_discovered  INTEGER NOT NULL DEFAULT 0,
          items_processed   INTEGER NOT NULL DEFAULT 0,
          items_failed      INTEGER NOT NULL DEFAULT 0,
          error_summary     TEXT,
          CONSTRAINT job_runs_valid_status CHECK (status IN (
            'running', 'completed', 'completed_with_errors', 'failed'
          ))
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS job_runs_start_time_idx ON job_runs (start_time);"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS job_log_entries (
          id          SERIAL PRIMARY KEY,
          run_id      UUID NOT NULL REFERENCES job_runs(id) ON DELETE CASCADE,
          level       VARCHAR(10) NOT NULL,
          message     TEXT NOT NULL,
          created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS job_log_entries;")
    op.execute("DROP TABLE IF EXISTS job_runs;")
    op.execute("DROP TABLE IF EXISTS transcripts;")
    op.execute("DROP TABLE IF EXISTS work_items;")
