"""State/store layer.

This package is the single source of truth for committed key/value state:
the per-key stability gate, the authoritative store, and the wire messages
that describe it to subscribers.
"""
