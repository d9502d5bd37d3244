"""
Taxonomies

Product types and raw leather types are flat lists of unique names. Catalog
items refer to them by name, so renaming or deleting one does not touch the
items that use it.
"""

import logging
from typing import List

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, serialize_doc, to_object_id, utcnow
from errors import AlreadyExistsError, NotFoundError, ValidationFailed

logger = logging.getLogger(__name__)


class TaxonomyService:
    def __init__(self, db, collection_name: str, label: str):
        self.collection = db[collection_name]
        self.db = db
        self.collection_name = collection_name
        self.label = label

    def _clean_name(self, name) -> str:
        name = str(name).strip() if name is not None else ""
        if not name:
            raise ValidationFailed(
                "Validation Error",
                errors=[{"path": "name", "message": f"{self.label} name is required."}],
            )
        return name

    def _duplicate(self) -> AlreadyExistsError:
        return AlreadyExistsError(f"{self.label} with this name already exists.")

    def create(self, name) -> dict:
        name = self._clean_name(name)
        try:
            new_id = create_document(self.db, self.collection_name, {"name": name})
        except DuplicateKeyError:
            raise self._duplicate()
        logger.info("Created %s '%s' (%s)", self.label, name, new_id)
        return serialize_doc(self.collection.find_one({"_id": to_object_id(new_id)}))

    def list(self) -> List[dict]:
        docs = get_documents(self.db, self.collection_name, sort=[("name", ASCENDING)])
        return [serialize_doc(d) for d in docs]

    def get_by_id(self, item_id) -> dict:
        oid = to_object_id(item_id)
        doc = self.collection.find_one({"_id": oid}) if oid else None
        if not doc:
            raise NotFoundError(f"{self.label} not found.")
        return serialize_doc(doc)

    def update(self, item_id, name) -> dict:
        name = self._clean_name(name)
        oid = to_object_id(item_id)
        if oid is None:
            raise NotFoundError(f"{self.label} not found.")
        try:
            doc = self.collection.find_one_and_update(
                {"_id": oid},
                {"$set": {"name": name, "updatedAt": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise self._duplicate()
        if not doc:
            raise NotFoundError(f"{self.label} not found.")
        logger.info("Renamed %s %s to '%s'", self.label, item_id, name)
        return serialize_doc(doc)

    def delete(self, item_id) -> bool:
        # catalog items that still use the name are left as they are
        oid = to_object_id(item_id)
        if oid is None:
            return False
        result = self.collection.delete_one({"_id": oid})
        if result.deleted_count:
            logger.info("Deleted %s %s", self.label, item_id)
        return bool(result.deleted_count)
