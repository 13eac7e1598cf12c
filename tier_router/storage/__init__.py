"""SQLite persistence for the usage ledger and session memory."""
