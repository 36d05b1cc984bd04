"""
Stores for TOTPGATE.

This package provides:
- stores: abstract store interfaces and the per-key ledger lock
- memory_store: in-memory implementation (tests, single process)
- mfa_db: SQLAlchemy implementation (PostgreSQL, SQLite)
"""
