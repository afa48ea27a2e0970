"""Sync bookkeeping: per-registry status records and the write-back sink."""
