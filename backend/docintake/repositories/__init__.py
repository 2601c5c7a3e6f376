"""
Repositories package — data-access layer.

Each repository file handles all DB operations for one domain entity.
Repositories do NOT handle HTTP concerns, queue handoff, or transaction
boundaries.

Convention:
    - One file per aggregate root (uploads.py, outbox.py, extracted_data.py)
    - All functions accept `AsyncSession` as the first argument
    - Use `flush()` internally; commit/rollback belongs to the service
      that opened the transaction (or the `get_db` dependency for reads)
"""
