"""Persistence collaborators for the image gateway.

Scope:
    Credential lookup, the quota ledger table, object storage for re-hosted
    artifacts, and the append-only audit log.

Backends:
    - `memory_store`: in-process, used by tests and when Supabase is not configured.
    - `supabase_store`: Supabase PostgREST + Storage over `httpx`.
"""
