"""
Board State Store

Persistence for the shared board document:
- Versioned document row guarded by optimistic concurrency (compare-and-swap on version)
- Append-only, idempotent event ledger keyed by client_request_id
- Per-project history used for entity-scoped restore
- Snapshot backups and whole-document restore
"""
