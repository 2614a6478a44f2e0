"""String key/value storage persisted in a local SQLite file.

Several processes pointed at the same file share one store, the way browser
tabs share ``localStorage``. Nothing pushes changes between them; readers see
another writer's update the next time they read the key.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import Engine

from coachess.db.base import Base
from coachess.db.session import build_session_factory, create_storage_engine
from coachess.models.storage_item import StorageItem

logger = logging.getLogger(__name__)


class LocalStorage:
    def __init__(self, url: str | None = None, *, engine: Engine | None = None):
        if engine is None:
            if url is None:
                raise ValueError("LocalStorage needs a database url or an engine")
            engine = create_storage_engine(url)
        self.engine = engine
        Base.metadata.create_all(bind=self.engine)
        self._session_factory = build_session_factory(self.engine)

    def get_item(self, key: str) -> str | None:
        with self._session_factory() as db:
            item = db.get(StorageItem, key)
            return item.value if item else None

    def set_item(self, key: str, value: str) -> None:
        with self._session_factory() as db:
            item = db.get(StorageItem, key)
            if item is None:
                item = StorageItem(key=key, value=value)
            else:
                item.value = value
            db.add(item)
            db.commit()
        logger.debug(f"Stored local key {key!r} ({len(value)} chars)")

    def remove_item(self, key: str) -> None:
        with self._session_factory() as db:
            item = db.get(StorageItem, key)
            if item is not None:
                db.delete(item)
                db.commit()
                logger.debug(f"Removed local key {key!r}")

    def keys(self) -> list[str]:
        with self._session_factory() as db:
            return [row.key for row in db.query(StorageItem).order_by(StorageItem.key).all()]

    def close(self) -> None:
        self.engine.dispose()
