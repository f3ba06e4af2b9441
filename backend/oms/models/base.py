# Overview: Declarative base for tables that live in tenant stores.

from __future__ import annotations

import uuid

from sqlalchemy.orm import DeclarativeBase


class StoreModel(DeclarativeBase):
    """
    Base for products, batches and orders.

    These tables are NOT bound to the central Flask-SQLAlchemy engine. The
    StoreRouter creates one engine per store endpoint and emits
    StoreModel.metadata against it, so the same schema exists in every
    dedicated store and in the shared default store.
    """


def new_id(prefix: str) -> str:
    """Opaque string identifier, e.g. 'o-3f2a...'."""
    return f"{prefix}-{uuid.uuid4().hex[:16]}"
