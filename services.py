"""
Record services

RecordService is the shared create/list/get/update/delete over one collection;
ImageBackedService adds the hosted-image housekeeping used by the catalog and
by custom manufacturing requests.
"""

import logging
from typing import Iterable, List, Optional, Tuple, Type, Union

from pydantic import BaseModel, ValidationError
from pymongo import ReturnDocument

from database import create_document, serialize_doc, to_object_id, utcnow
from errors import ValidationFailed
from filters import FieldKind, FilterField, ListResult, ListSpec, run_list_query, sort_allow_list
from images import ImageStore

logger = logging.getLogger(__name__)

# (file bytes, content type) of one uploaded file
Upload = Tuple[bytes, Optional[str]]


class RecordService:
    collection_name = ""
    label = "Record"
    list_spec: Optional[ListSpec] = None

    def __init__(self, db):
        self.db = db
        self.collection = db[self.collection_name]

    def _find(self, record_id) -> Optional[dict]:
        oid = to_object_id(record_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def create(self, data: Union[BaseModel, dict]) -> dict:
        new_id = create_document(self.db, self.collection_name, data)
        logger.info("Created %s %s", self.label, new_id)
        return serialize_doc(self._find(new_id))

    def list(self, params) -> ListResult:
        result = run_list_query(self.collection, self.list_spec, params)
        result.items = [serialize_doc(d) for d in result.items]
        return result

    def get_by_id(self, record_id) -> Optional[dict]:
        doc = self._find(record_id)
        if doc is None:
            logger.warning("%s not found by ID: %s", self.label, record_id)
        return serialize_doc(doc)

    def update(self, record_id, changes: Union[BaseModel, dict]) -> Optional[dict]:
        if isinstance(changes, BaseModel):
            changes = changes.model_dump(exclude_unset=True)
        oid = to_object_id(record_id)
        if oid is None:
            return None
        changes = {k: v for k, v in changes.items() if k not in ("_id", "id", "createdAt")}
        changes["updatedAt"] = utcnow()
        doc = self.collection.find_one_and_update(
            {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if doc is None:
            logger.warning("%s not found for update: %s", self.label, record_id)
            return None
        logger.info("Updated %s %s", self.label, record_id)
        return serialize_doc(doc)

    def delete(self, record_id) -> bool:
        oid = to_object_id(record_id)
        if oid is None:
            return False
        result = self.collection.delete_one({"_id": oid})
        if not result.deleted_count:
            logger.warning("Attempted to delete non-existent %s ID: %s", self.label, record_id)
            return False
        logger.info("Deleted %s %s", self.label, record_id)
        return True


class ImageBackedService(RecordService):
    """A record carrying a list of hosted image URLs.

    Removing the record, or some of its images, also asks the image store to
    delete the hosted files. Those deletions are best-effort: a failure is
    logged and the database change still goes through.
    """

    image_field = "images"
    image_folder = ""
    require_images = True

    def __init__(self, db, image_store: ImageStore):
        super().__init__(db)
        self.image_store = image_store

    def create(self, data: Union[BaseModel, dict]) -> dict:
        images = data.get(self.image_field) if isinstance(data, dict) else getattr(data, self.image_field, None)
        if self.require_images and not images:
            raise ValidationFailed("At least one image is required.")
        return super().create(data)

    def update(self, record_id, changes: Union[BaseModel, dict]) -> Optional[dict]:
        if isinstance(changes, BaseModel):
            changes = changes.model_dump(exclude_unset=True)
        if self.require_images and self.image_field in changes and not changes[self.image_field]:
            raise ValidationFailed(
                "Validation Error",
                errors=[{"path": self.image_field, "message": "At least one image is required."}],
            )
        return super().update(record_id, changes)

    def check_uploads(self, uploads: List[Upload]):
        pass

    def upload_images(self, uploads: Iterable[Upload]) -> List[str]:
        urls = []
        for data, content_type in uploads:
            urls.append(self.image_store.upload(data, self.image_folder, content_type))
        return urls

    def _validate_or_discard(self, model_cls: Type[BaseModel], payload: dict, uploaded: List[str]) -> BaseModel:
        try:
            return model_cls.model_validate(payload)
        except ValidationError:
            for url in uploaded:
                self._destroy_image(url)
            raise

    def create_from_form(self, model_cls: Type[BaseModel], payload: dict, uploads: List[Upload]) -> dict:
        """Upload any attached files, then validate and save the record.

        Files uploaded for a submission that fails validation are deleted again.
        """
        self.check_uploads(uploads)
        if self.require_images and not payload.get(self.image_field) and not uploads:
            raise ValidationFailed("At least one image is required.")
        uploaded = self.upload_images(uploads)
        payload = {**payload, self.image_field: list(payload.get(self.image_field) or []) + uploaded}
        return self.create(self._validate_or_discard(model_cls, payload, uploaded))

    def update_from_form(self, record_id, model_cls: Type[BaseModel], payload: dict,
                         uploads: List[Upload]) -> Optional[dict]:
        doc = self._find(record_id)
        if doc is None:
            return None
        self.check_uploads(uploads)
        uploaded = self.upload_images(uploads)
        if uploaded:
            # new files are appended to the images already on the record
            current = payload[self.image_field] if self.image_field in payload else doc.get(self.image_field)
            payload = {**payload, self.image_field: list(current or []) + uploaded}
        return self.update(record_id, self._validate_or_discard(model_cls, payload, uploaded))

    def _destroy_image(self, url: str):
        public_id = ImageStore.public_id_from_url(url, self.image_folder)
        if public_id is None:
            logger.warning("Could not extract public ID from image URL: %s", url)
            return
        try:
            self.image_store.destroy(public_id)
        except Exception as exc:
            logger.error("Error deleting image %s: %s", public_id, exc)

    def delete(self, record_id) -> bool:
        doc = self._find(record_id)
        if doc is None:
            logger.warning("Attempted to delete non-existent %s ID: %s", self.label, record_id)
            return False
        for url in doc.get(self.image_field) or []:
            self._destroy_image(url)
        return super().delete(record_id)

    def remove_images(self, record_id, urls) -> Optional[dict]:
        doc = self._find(record_id)
        if doc is None:
            return None
        current = doc.get(self.image_field) or []
        doomed = set(urls or ())
        kept = [url for url in current if url not in doomed]
        if len(kept) == len(current):
            return serialize_doc(doc)

        for url in current:
            if url in doomed:
                self._destroy_image(url)
        updated = self.collection.find_one_and_update(
            {"_id": doc["_id"]},
            {"$set": {self.image_field: kept, "updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        logger.info("Removed %d image(s) from %s %s", len(current) - len(kept), self.label, record_id)
        return serialize_doc(updated)


FINISHED_PRODUCT_LIST = ListSpec(
    name="finished products",
    fields={
        "productType": FilterField(FieldKind.EXACT, "productType"),
        "availability": FilterField(
            FieldKind.EXACT, "availability", choices=("In Stock", "Made to Order", "Limited Stock")
        ),
        "material": FilterField(FieldKind.SUBSTRING, "materialUsed"),
        "category": FilterField(FieldKind.SUBSTRING, "category"),
        "color": FilterField(FieldKind.ARRAY_CONTAINS, "colorVariants"),
        "isFeatured": FilterField(FieldKind.BOOLEAN, "isFeatured"),
        "isArchived": FilterField(FieldKind.BOOLEAN, "isArchived"),
        "isActive": FilterField(FieldKind.BOOLEAN, "isActive"),
        "sampleAvailable": FilterField(FieldKind.BOOLEAN, "sampleAvailable"),
    },
    search_fields=("name", "description", "tags"),
    sort_fields=sort_allow_list(
        "name", "productType", "materialUsed", "moq", "pricePerUnit", "isFeatured", "sampleAvailable",
        "category", "availability", "stockCount", "isActive", "isArchived",
    ),
    archive_field="isArchived",
)

RAW_LEATHER_LIST = ListSpec(
    name="raw leather",
    fields={
        "leatherType": FilterField(FieldKind.EXACT, "leatherType"),
        "animal": FilterField(FieldKind.EXACT, "animal"),
        "finish": FilterField(FieldKind.EXACT, "finish"),
        "priceUnit": FilterField(FieldKind.EXACT, "priceUnit"),
        "color": FilterField(FieldKind.ARRAY_CONTAINS, "colors"),
        "isFeatured": FilterField(FieldKind.BOOLEAN, "isFeatured"),
        "isArchived": FilterField(FieldKind.BOOLEAN, "isArchived"),
        "sampleAvailable": FilterField(FieldKind.BOOLEAN, "sampleAvailable"),
        "discountAvailable": FilterField(FieldKind.BOOLEAN, "discountAvailable"),
        "negotiable": FilterField(FieldKind.BOOLEAN, "negotiable"),
    },
    search_fields=("name", "description"),
    sort_fields=sort_allow_list(
        "name", "leatherType", "animal", "finish", "thickness", "size", "minOrderQuantity",
        "sampleAvailable", "isFeatured", "isArchived", "pricePerSqFt", "currency", "priceUnit",
        "discountAvailable", "negotiable",
    ),
    archive_field="isArchived",
)

MAX_DESIGN_FILES = 5
MAX_DESIGN_FILE_BYTES = 25 * 1024 * 1024
DESIGN_FILE_TYPES = (
    "application/pdf", "image/jpeg", "image/png", "image/gif",
    "image/x-adobe-ai", "application/postscript",
    "image/vnd.adobe.photoshop", "image/psd",
    "application/dxf", "application/x-autocad",
    "application/vnd.oasis.opendocument.text", "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
)

CUSTOM_MANUFACTURING_LIST = ListSpec(
    name="custom manufacturing requests",
    fields={
        "status": FilterField(
            FieldKind.EXACT, "status", choices=("Pending", "Reviewed", "Contacted", "Completed", "Archived")
        ),
    },
    search_fields=("companyName", "contactPerson", "email", "productType", "preferredMaterial"),
    sort_fields=sort_allow_list(
        "companyName", "contactPerson", "email", "productType", "estimatedQuantity", "status",
    ),
)


class FinishedProductService(ImageBackedService):
    collection_name = "finishedproduct"
    label = "Finished product"
    list_spec = FINISHED_PRODUCT_LIST
    image_folder = "finished-products"


class RawLeatherService(ImageBackedService):
    collection_name = "rawleather"
    label = "Raw leather"
    list_spec = RAW_LEATHER_LIST
    image_folder = "raw-leather"


class CustomManufacturingService(ImageBackedService):
    collection_name = "custommanufacturingrequest"
    label = "Custom manufacturing request"
    list_spec = CUSTOM_MANUFACTURING_LIST
    image_field = "designFiles"
    image_folder = "custom-manufacturing"
    require_images = False

    def __init__(self, db, image_store: ImageStore, notifications=None):
        super().__init__(db, image_store)
        self.notifications = notifications

    def check_uploads(self, uploads: List[Upload]):
        if len(uploads) > MAX_DESIGN_FILES:
            raise ValidationFailed(f"You can upload a maximum of {MAX_DESIGN_FILES} design files.")
        for data, content_type in uploads:
            if len(data) > MAX_DESIGN_FILE_BYTES:
                raise ValidationFailed(f"Design files must be {MAX_DESIGN_FILE_BYTES // (1024 * 1024)}MB or smaller.")
            if content_type not in DESIGN_FILE_TYPES:
                raise ValidationFailed(
                    "Unsupported design file format. Supported: PDF, JPG, PNG, GIF, AI, PSD, DXF/DWG, DOC/DOCX."
                )

    def create(self, data: Union[BaseModel, dict]) -> dict:
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_none=True)
        record = super().create({**data, "status": "Pending"})
        if self.notifications is not None:
            self.notifications.notify(
                title="New Custom Manufacturing Request",
                message=f"{record['companyName']} requested custom manufacturing of {record['productType']}.",
                type="new_custom_request",
                link=f"/admin/custom-manufacturing/{record['id']}",
                related_id=record["id"],
            )
        return record
