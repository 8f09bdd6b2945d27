"""
Market primitives module.

Price series, share inventory and per-user ledger of a single session.
PriceSeries and Ledger rely on the session lock for serialization.
"""
