"""
Fixed SQL surface of the history store.

Every statement uses "?" placeholders and goes through
adapt_placeholders() before it reaches a driver.
"""

CREATE_TABLE_SQL = """CREATE TABLE IF NOT EXISTS history
(
   id VARCHAR(255) PRIMARY KEY,
   command_timestamp TEXT NOT NULL,
   cwd TEXT,
   shell TEXT,
   user_id BIGINT,
   user_name TEXT,
   ip TEXT,
   os TEXT,
   exit_status BIGINT,
   command TEXT
)"""

CREATE_INDEX_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_history_timestamp ON history (command_timestamp)"
)

INSERT_HISTORY_SQL = (
    "INSERT INTO history (id, command_timestamp, cwd, shell, user_id, user_name, "
    "ip, os, exit_status, command) VALUES ( ?, ?, ?, ?, ?, ?, ?, ?, ?, ? )"
)

TRUNCATE_HISTORY_SQL = "DELETE FROM history"

COUNT_HISTORY_SQL = "SELECT COUNT(*) FROM history"

EXPORT_HISTORY_SQL = (
    "SELECT command, command_timestamp FROM history ORDER BY command_timestamp"
)

# Foreign "recent" history database (one row per command).
FOREIGN_COUNT_SQL = "SELECT COUNT(*) FROM commands"
FOREIGN_SELECT_SQL = "SELECT command_dt, command, return_val, pwd FROM commands"
