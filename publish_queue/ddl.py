"""Database schema DDL for the publish queue."""

PUBLISH_JOBS_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS publish_jobs (
  id             BIGSERIAL PRIMARY KEY,
  requester_id   TEXT NOT NULL,
  post_url       TEXT NOT NULL,
  user_text      TEXT NOT NULL DEFAULT '',

  status         TEXT NOT NULL CHECK (status IN ('pending', 'processing')),
  available_at   TIMESTAMPTZ NOT NULL,

  retry_count    INT NOT NULL DEFAULT 0,
  last_delay_ms  BIGINT NOT NULL DEFAULT 0,

  created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at     TIMESTAMPTZ NOT NULL DEFAULT now()
);

-- Reservation order is (available_at, id) among pending rows
CREATE INDEX IF NOT EXISTS idx_publish_jobs_status_available
ON publish_jobs (status, available_at, id);
"""
