"""Database schema DDL. All tables use CREATE IF NOT EXISTS for idempotency."""

from driverledger.models import DEFAULT_MAX_POINTS

PROJECTION_TABLES = ("drivers", "violations", "sync_status", "ledger_policy", "deferred_events")

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS drivers (
    address TEXT PRIMARY KEY,
    total_points INTEGER NOT NULL DEFAULT 0,
    violation_count INTEGER NOT NULL DEFAULT 0,
    is_suspended INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS violations (
    violation_id INTEGER PRIMARY KEY,
    driver_address TEXT NOT NULL,
    points INTEGER NOT NULL,
    violation_type TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    is_revoked INTEGER NOT NULL DEFAULT 0,
    block_number INTEGER,
    log_index INTEGER,
    transaction_hash TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (driver_address) REFERENCES drivers(address) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_violations_driver ON violations(driver_address);

CREATE TABLE IF NOT EXISTS sync_status (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    last_block_number INTEGER,
    last_log_index INTEGER,
    last_sync_time TEXT
);

INSERT OR IGNORE INTO sync_status (id) VALUES (1);

CREATE TABLE IF NOT EXISTS ledger_policy (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    max_points INTEGER NOT NULL DEFAULT {DEFAULT_MAX_POINTS},
    updated_block INTEGER,
    updated_log_index INTEGER
);

CREATE TABLE IF NOT EXISTS deferred_events (
    block_number INTEGER NOT NULL,
    log_index INTEGER NOT NULL,
    transaction_hash TEXT,
    event_type TEXT NOT NULL,
    payload TEXT NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    deferred_at TEXT NOT NULL,
    PRIMARY KEY (block_number, log_index)
);
"""

EVENT_LOG_SQL = """
CREATE TABLE IF NOT EXISTS events (
    block_number INTEGER NOT NULL,
    log_index INTEGER NOT NULL,
    transaction_hash TEXT,
    event_type TEXT NOT NULL,
    payload TEXT NOT NULL,
    PRIMARY KEY (block_number, log_index)
);

CREATE INDEX IF NOT EXISTS idx_events_event_type ON events(event_type);
"""
