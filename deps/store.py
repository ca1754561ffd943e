# deps/store.py
from trm.storage.base import Store
from trm.storage.factory import get_store as _get_store

def get_store() -> Store:
    # overridden in tests via app.dependency_overrides
    return _get_store()
