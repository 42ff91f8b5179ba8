import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import PyMongoError


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


class CatalogStore:
    """Writes to the catalog collections without surfacing failures.

    A failed write is logged and reported as a falsy return value; callers
    have already moved on (closed the form, updated the page).
    """

    def __init__(self, db, logger: Optional[logging.Logger] = None):
        self.db = db
        self.logger = logger or logging.getLogger(__name__)

    def add_document(self, collection: str, document: Dict) -> Optional[str]:
        try:
            result = self.db[collection].insert_one(document)
        except PyMongoError as exc:
            self.logger.warning("Unable to add %s document: %s", collection, exc)
            return None
        return str(result.inserted_id)

    def ensure_named_document(self, collection: str, name: str) -> bool:
        """Insert ``{"name": name}`` unless a document with that name exists, ignoring case.

        Returns True only when this call inserted the document.
        """
        name_filter = {"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}}
        try:
            result = self.db[collection].update_one(
                name_filter, {"$setOnInsert": {"name": name}}, upsert=True
            )
        except PyMongoError as exc:
            self.logger.warning("Unable to seed %s document %r: %s", collection, name, exc)
            return False
        return result.upserted_id is not None

    def update_document(self, collection: str, document_id, changes: Dict) -> bool:
        object_id = to_object_id(document_id)
        if object_id is None:
            self.logger.warning("Unable to update %s document: invalid id %r", collection, document_id)
            return False
        try:
            result = self.db[collection].update_one({"_id": object_id}, {"$set": changes})
        except PyMongoError as exc:
            self.logger.warning("Unable to update %s document %s: %s", collection, document_id, exc)
            return False
        return result.matched_count > 0

    def delete_document(self, collection: str, document_id) -> bool:
        object_id = to_object_id(document_id)
        if object_id is None:
            self.logger.warning("Unable to delete %s document: invalid id %r", collection, document_id)
            return False
        try:
            result = self.db[collection].delete_one({"_id": object_id})
        except PyMongoError as exc:
            self.logger.warning("Unable to delete %s document %s: %s", collection, document_id, exc)
            return False
        return result.deleted_count > 0


class LiveCollection:
    """Snapshot of one collection with a loading flag and change listeners."""

    def __init__(
        self,
        db,
        name: str,
        sort: Optional[List[Tuple[str, int]]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.db = db
        self.name = name
        self.sort = sort
        self.logger = logger or logging.getLogger(__name__)
        self.is_loading = True
        self.data: Optional[List[Dict]] = None
        self._listeners: List[Callable[[List[Dict]], None]] = []

    def subscribe(self, listener: Callable[[List[Dict]], None]):
        self._listeners.append(listener)
        if not self.is_loading and self.data is not None:
            listener(self.data)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def refresh(self) -> bool:
        try:
            cursor = self.db[self.name].find()
            if self.sort:
                cursor = cursor.sort(self.sort)
            documents = list(cursor)
        except PyMongoError as exc:
            self.logger.warning("Unable to load %s snapshot: %s", self.name, exc)
            return False

        changed = self.is_loading or documents != self.data
        self.data = documents
        self.is_loading = False
        if changed:
            for listener in list(self._listeners):
                listener(documents)
        return changed
