"""
CRM Batch Migrate

Paginated, idempotent batch migrations for the CRM's Supabase tables.

Supports:
- Keyset-paginated reads that stay correct while rows are deleted
- Upserts on natural keys, so interrupted runs can simply be rerun
- Per-record fallback when a batch write is rejected
- Dry runs, iteration caps, post-run verification and rollback
- A CLI for operators and a FastAPI admin API
"""

__version__ = "0.1.0"
