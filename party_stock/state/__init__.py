"""
Session state module.

Holds the session data models, the OPEN → SETTLING → OPEN … → CLOSED phase
machine, the per-session market container and the session registry.
"""
