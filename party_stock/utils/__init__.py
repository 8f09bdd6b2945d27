"""
Utility functions module.

Time Semantics:
- All engine timestamps are timezone-aware UTC datetimes
- Timestamps are serialized as ISO8601 strings in snapshots and logs
- Session expiry compares against an injectable "now" so it can be tested
"""
