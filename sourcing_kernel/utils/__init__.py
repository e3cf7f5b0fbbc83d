"""Deterministic hashing and idempotency helpers."""
