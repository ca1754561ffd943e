# trm/storage/factory.py
from __future__ import annotations

from typing import Any, Dict

from settings import settings

_STORE_CACHE: Dict[str, Any] = {}


def get_store():
    key = (settings.STORE_BACKEND or "postgres").strip().lower()

    if key in _STORE_CACHE:
        return _STORE_CACHE[key]

    if key == "memory":
        from trm.storage.memory import InMemoryStore
        store = InMemoryStore()
    elif key == "postgres":
        from trm.storage.postgres import PgStore
        store = PgStore()
    else:
        raise ValueError(f"Unsupported STORE_BACKEND: {key}")

    _STORE_CACHE[key] = store
    return store


def reset_store_cache() -> None:
    _STORE_CACHE.clear()
