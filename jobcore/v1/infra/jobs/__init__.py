"""
Durable job queue for meeting processing.

This package provides the broker-less job system:
- Postgres-backed queue claimed with FOR UPDATE SKIP LOCKED
- Idempotent enqueue keyed by deterministic idempotency keys
- Exponential backoff, dead-letter state and stuck-job recovery
- Registry-based handler dispatch driven by a lease-holding worker
"""
