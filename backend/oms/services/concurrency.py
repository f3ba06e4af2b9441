# Overview: Locking helpers shared by services that mutate stock.

from __future__ import annotations


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Product.version_id still rejects a concurrent writer at flush time.
    """
    return query.with_for_update()
