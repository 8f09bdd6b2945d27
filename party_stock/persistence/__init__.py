"""
Persistence module.

SQLite snapshots of session state for recovery after a restart.
"""
