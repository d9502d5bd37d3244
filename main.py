import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pymongo.errors import PyMongoError

# Local imports
from config import Settings, configure_logging
from database import connect, ensure_indexes
from errors import NotFoundError, ValidationFailed, error_response, register_error_handlers
from filters import ListResult, parse_pagination
from forms import PrefillFlow, parse_form_fields, submit_sample_request, validate_form
from images import CloudinaryImageStore, ImageStore
from leads import MessageService, QuoteService, SampleService
from mailer import Mailer, mailer_from_settings
from notifications import NotificationService
from payments import TransferProvider, provider_from_settings
from schemas import (
    ContactForm,
    CustomManufacturingForm,
    CustomManufacturingUpdate,
    FinishedProduct,
    FinishedProductUpdate,
    MessageStatusUpdate,
    NotificationUpdate,
    ProductType,
    QuoteRequestForm,
    QuoteRequestUpdate,
    RawLeather,
    RawLeatherType,
    RawLeatherUpdate,
    RemoveImagesRequest,
    SampleRequestSubmission,
    SampleRequestUpdate,
)
from services import CustomManufacturingService, FinishedProductService, RawLeatherService
from shipping import COUNTRY_TO_CONTINENT, SUPPORTED_CURRENCY, shipping_fee_cents
from taxonomy import TaxonomyService

logger = logging.getLogger(__name__)

COLLECTIONS = [
    "finishedproduct", "rawleather", "producttype", "rawleathertype", "quoterequest",
    "samplerequest", "custommanufacturingrequest", "message", "notification",
]


@dataclass
class Services:
    db: object
    finished_products: FinishedProductService
    raw_leather: RawLeatherService
    product_types: TaxonomyService
    raw_leather_types: TaxonomyService
    quotes: QuoteService
    samples: SampleService
    custom_manufacturing: CustomManufacturingService
    messages: MessageService
    notifications: NotificationService
    payments: TransferProvider


def get_services(request: Request) -> Services:
    return request.app.state.services


router = APIRouter()


# Helpers
def respond(data=None, message: Optional[str] = None, status_code: int = 200, **extra):
    content = {"success": True}
    if message:
        content["message"] = message
    if data is not None:
        content["data"] = data
    content.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


def list_response(service, request: Request, what: str):
    params = dict(request.query_params)
    try:
        result = service.list(params)
    except PyMongoError:
        logger.exception("Error getting %s", what)
        page, limit = parse_pagination(params.get("page"), params.get("limit"))
        empty = ListResult(items=[], total=0, page=page, limit=limit)
        return error_response(500, f"Failed to retrieve {what}.", data=[], pagination=empty.pagination())
    return respond(
        result.items,
        f"{what[0].upper()}{what[1:]} retrieved successfully.",
        pagination=result.pagination(),
    )


def found(record, label: str, record_id: str):
    if not record:
        raise NotFoundError(f"{label} with ID {record_id} not found.")
    return record


async def read_payload(request: Request):
    """Body fields plus uploaded files, from either JSON or multipart form data."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        fields, files = parse_form_fields(form.multi_items())
        uploads = []
        for upload in files:
            data = await upload.read()
            if data:
                uploads.append((data, upload.content_type))
        return fields, uploads
    try:
        body = await request.json()
    except ValueError:
        raise ValidationFailed("Invalid request body.")
    if not isinstance(body, dict):
        raise ValidationFailed("Invalid request body.")
    return body, []


@router.get("/")
def read_root():
    return {"message": "Leather Commerce API running"}


@router.get("/test")
def test_database(request: Request):
    db = request.app.state.db
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = getattr(db, "name", None) or "Unknown"
            response["connection_status"] = "Connected"
            try:
                response["collections"] = db.list_collection_names()[:10]
                response["database"] = "✅ Connected & Working"
            except PyMongoError as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Catalog: finished products
@router.get("/api/finished-products")
def list_finished_products(request: Request, svc: Services = Depends(get_services)):
    return list_response(svc.finished_products, request, "finished products")


@router.post("/api/finished-products")
async def create_finished_product(request: Request, svc: Services = Depends(get_services)):
    fields, uploads = await read_payload(request)
    product = svc.finished_products.create_from_form(FinishedProduct, fields, uploads)
    return respond(product, "Finished product created successfully.", status_code=201)


@router.get("/api/finished-products/{product_id}")
def get_finished_product(product_id: str, svc: Services = Depends(get_services)):
    product = found(svc.finished_products.get_by_id(product_id), "Finished product", product_id)
    return respond(product, "Finished product retrieved successfully.")


@router.put("/api/finished-products/{product_id}")
async def update_finished_product(product_id: str, request: Request, svc: Services = Depends(get_services)):
    fields, uploads = await read_payload(request)
    product = svc.finished_products.update_from_form(product_id, FinishedProductUpdate, fields, uploads)
    return respond(found(product, "Finished product", product_id), "Finished product updated successfully.")


@router.delete("/api/finished-products/{product_id}")
def delete_finished_product(product_id: str, svc: Services = Depends(get_services)):
    found(svc.finished_products.delete(product_id), "Finished product", product_id)
    return respond(message="Finished product deleted successfully.")


@router.api_route("/api/finished-products/{product_id}/remove-images", methods=["POST", "PATCH"])
def remove_finished_product_images(product_id: str, payload: RemoveImagesRequest,
                                   svc: Services = Depends(get_services)):
    product = svc.finished_products.remove_images(product_id, payload.imageUrls)
    return respond(found(product, "Finished product", product_id), "Images removed successfully.")


# Catalog: raw leather
@router.get("/api/raw-leather")
def list_raw_leather(request: Request, svc: Services = Depends(get_services)):
    return list_response(svc.raw_leather, request, "raw leather")


@router.post("/api/raw-leather")
async def create_raw_leather(request: Request, svc: Services = Depends(get_services)):
    fields, uploads = await read_payload(request)
    leather = svc.raw_leather.create_from_form(RawLeather, fields, uploads)
    return respond(leather, "Raw leather created successfully.", status_code=201)


@router.get("/api/raw-leather/{leather_id}")
def get_raw_leather(leather_id: str, svc: Services = Depends(get_services)):
    leather = found(svc.raw_leather.get_by_id(leather_id), "Raw leather", leather_id)
    return respond(leather, "Raw leather retrieved successfully.")


@router.put("/api/raw-leather/{leather_id}")
async def update_raw_leather(leather_id: str, request: Request, svc: Services = Depends(get_services)):
    fields, uploads = await read_payload(request)
    leather = svc.raw_leather.update_from_form(leather_id, RawLeatherUpdate, fields, uploads)
    return respond(found(leather, "Raw leather", leather_id), "Raw leather updated successfully.")


@router.delete("/api/raw-leather/{leather_id}")
def delete_raw_leather(leather_id: str, svc: Services = Depends(get_services)):
    found(svc.raw_leather.delete(leather_id), "Raw leather", leather_id)
    return respond(message="Raw leather deleted successfully.")


@router.api_route("/api/raw-leather/{leather_id}/remove-images", methods=["POST", "PATCH"])
def remove_raw_leather_images(leather_id: str, payload: RemoveImagesRequest,
                              svc: Services = Depends(get_services)):
    leather = svc.raw_leather.remove_images(leather_id, payload.imageUrls)
    return respond(found(leather, "Raw leather", leather_id), "Images removed successfully.")


# Taxonomies
@router.get("/api/product-types")
def list_product_types(svc: Services = Depends(get_services)):
    return respond(svc.product_types.list(), "Product types retrieved successfully.")


@router.post("/api/product-types")
def create_product_type(payload: ProductType, svc: Services = Depends(get_services)):
    return respond(svc.product_types.create(payload.name), "Product type created successfully.", status_code=201)


@router.get("/api/product-types/{type_id}")
def get_product_type(type_id: str, svc: Services = Depends(get_services)):
    return respond(svc.product_types.get_by_id(type_id), "Product type retrieved successfully.")


@router.put("/api/product-types/{type_id}")
def update_product_type(type_id: str, payload: ProductType, svc: Services = Depends(get_services)):
    return respond(svc.product_types.update(type_id, payload.name), "Product type updated successfully.")


@router.delete("/api/product-types/{type_id}")
def delete_product_type(type_id: str, svc: Services = Depends(get_services)):
    found(svc.product_types.delete(type_id), "Product type", type_id)
    return respond(message="Product type deleted successfully.")


@router.get("/api/raw-leather-types")
def list_raw_leather_types(svc: Services = Depends(get_services)):
    return respond(svc.raw_leather_types.list(), "Raw leather types retrieved successfully.")


@router.post("/api/raw-leather-types")
def create_raw_leather_type(payload: RawLeatherType, svc: Services = Depends(get_services)):
    return respond(
        svc.raw_leather_types.create(payload.name), "Raw leather type created successfully.", status_code=201
    )


@router.get("/api/raw-leather-types/{type_id}")
def get_raw_leather_type(type_id: str, svc: Services = Depends(get_services)):
    return respond(svc.raw_leather_types.get_by_id(type_id), "Raw leather type retrieved successfully.")


@router.put("/api/raw-leather-types/{type_id}")
def update_raw_leather_type(type_id: str, payload: RawLeatherType, svc: Services = Depends(get_services)):
    return respond(svc.raw_leather_types.update(type_id, payload.name), "Raw leather type updated successfully.")


@router.delete("/api/raw-leather-types/{type_id}")
def delete_raw_leather_type(type_id: str, svc: Services = Depends(get_services)):
    found(svc.raw_leather_types.delete(type_id), "Raw leather type", type_id)
    return respond(message="Raw leather type deleted successfully.")


# Leads: quote requests
@router.get("/api/quote-requests")
def list_quote_requests(request: Request, svc: Services = Depends(get_services)):
    return list_response(svc.quotes, request, "quote requests")


@router.post("/api/quote-requests")
def create_quote_request(payload: QuoteRequestForm, svc: Services = Depends(get_services)):
    return respond(svc.quotes.create(payload), "Quote request submitted successfully.", status_code=201)


@router.get("/api/quote-requests/{request_id}")
def get_quote_request(request_id: str, svc: Services = Depends(get_services)):
    quote = found(svc.quotes.get_by_id(request_id), "Quote request", request_id)
    return respond(quote, "Quote request retrieved successfully.")


@router.api_route("/api/quote-requests/{request_id}", methods=["PUT", "PATCH"])
def update_quote_request(request_id: str, payload: QuoteRequestUpdate, svc: Services = Depends(get_services)):
    quote = found(svc.quotes.update(request_id, payload), "Quote request", request_id)
    return respond(quote, "Quote request updated successfully.")


@router.delete("/api/quote-requests/{request_id}")
def delete_quote_request(request_id: str, svc: Services = Depends(get_services)):
    found(svc.quotes.delete(request_id), "Quote request", request_id)
    return respond(message="Quote request deleted successfully.")


# Leads: sample requests
class TransferRequest(BaseModel):
    country: str
    currency: str = SUPPORTED_CURRENCY
    email: Optional[str] = None
    contactPerson: Optional[str] = None
    companyName: Optional[str] = None
    metadata: dict = {}


@router.get("/api/shipping-fee")
def get_shipping_fee(country: str = Query(..., min_length=1)):
    cents = shipping_fee_cents(country)
    return respond({
        "country": country,
        "continent": COUNTRY_TO_CONTINENT.get(country, "default"),
        "amountCents": cents,
        "amount": cents / 100,
        "currency": SUPPORTED_CURRENCY.upper(),
    })


@router.post("/api/sample-requests/create-transfer")
def create_sample_transfer(payload: TransferRequest, svc: Services = Depends(get_services)):
    transfer = svc.payments.create_transfer(
        payload.country,
        payload.currency,
        email=payload.email,
        contact_person=payload.contactPerson,
        company_name=payload.companyName,
        metadata=payload.metadata,
    )
    return respond(transfer, "Payment instructions created.")


@router.get("/api/sample-requests/check-transfer")
def check_sample_transfer(transferId: str = Query(..., min_length=1), svc: Services = Depends(get_services)):
    status = svc.payments.check_transfer(transferId)
    status["funded"] = svc.payments.is_funded(status.get("status"))
    return respond(status)


@router.get("/api/sample-requests")
def list_sample_requests(request: Request, svc: Services = Depends(get_services)):
    return list_response(svc.samples, request, "sample requests")


@router.post("/api/sample-requests")
def create_sample_request(payload: SampleRequestSubmission, svc: Services = Depends(get_services)):
    sample = submit_sample_request(svc.payments, svc.samples, payload)
    return respond(sample, "Sample request created successfully.", status_code=201)


@router.get("/api/sample-requests/{request_id}")
def get_sample_request(request_id: str, svc: Services = Depends(get_services)):
    sample = found(svc.samples.get_by_id(request_id), "Sample request", request_id)
    return respond(sample, "Sample request retrieved successfully.")


@router.api_route("/api/sample-requests/{request_id}", methods=["PUT", "PATCH"])
def update_sample_request(request_id: str, payload: SampleRequestUpdate, svc: Services = Depends(get_services)):
    sample = found(svc.samples.update(request_id, payload), "Sample request", request_id)
    return respond(sample, "Sample request updated successfully.")


@router.delete("/api/sample-requests/{request_id}")
def delete_sample_request(request_id: str, svc: Services = Depends(get_services)):
    found(svc.samples.delete(request_id), "Sample request", request_id)
    return respond(message="Sample request deleted successfully.")


# Leads: custom manufacturing
@router.get("/api/custom-manufacturing")
def list_custom_manufacturing(request: Request, svc: Services = Depends(get_services)):
    return list_response(svc.custom_manufacturing, request, "custom manufacturing requests")


@router.post("/api/custom-manufacturing")
async def create_custom_manufacturing(request: Request, svc: Services = Depends(get_services)):
    fields, uploads = await read_payload(request)
    record = svc.custom_manufacturing.create_from_form(CustomManufacturingForm, fields, uploads)
    return respond(record, "Custom manufacturing request submitted successfully.", status_code=201)


@router.get("/api/custom-manufacturing/{request_id}")
def get_custom_manufacturing(request_id: str, svc: Services = Depends(get_services)):
    record = found(svc.custom_manufacturing.get_by_id(request_id), "Custom manufacturing request", request_id)
    return respond(record, "Custom manufacturing request retrieved successfully.")


@router.api_route("/api/custom-manufacturing/{request_id}", methods=["PUT", "PATCH"])
def update_custom_manufacturing(request_id: str, payload: CustomManufacturingUpdate,
                                svc: Services = Depends(get_services)):
    record = svc.custom_manufacturing.update(request_id, payload)
    return respond(
        found(record, "Custom manufacturing request", request_id),
        "Custom manufacturing request updated successfully.",
    )


@router.delete("/api/custom-manufacturing/{request_id}")
def delete_custom_manufacturing(request_id: str, svc: Services = Depends(get_services)):
    found(svc.custom_manufacturing.delete(request_id), "Custom manufacturing request", request_id)
    return respond(message="Custom manufacturing request deleted successfully.")


# Messages
@router.post("/api/contact")
def submit_contact_form(payload: ContactForm, svc: Services = Depends(get_services)):
    return respond(svc.messages.create(payload), "Your message has been sent successfully.", status_code=201)


@router.get("/api/messages")
def list_messages(request: Request, svc: Services = Depends(get_services)):
    return list_response(svc.messages, request, "messages")


@router.get("/api/messages/{message_id}")
def get_message(message_id: str, svc: Services = Depends(get_services)):
    return respond(found(svc.messages.get_by_id(message_id), "Message", message_id), "Message retrieved successfully.")


@router.patch("/api/messages/{message_id}")
def update_message_status(message_id: str, payload: MessageStatusUpdate, svc: Services = Depends(get_services)):
    message = svc.messages.set_status(message_id, payload.status, payload.replyText)
    found(message, "Message", message_id)
    return respond(message, "Message status updated successfully.")


@router.delete("/api/messages/{message_id}")
def delete_message(message_id: str, svc: Services = Depends(get_services)):
    found(svc.messages.delete(message_id), "Message", message_id)
    return respond(message="Message deleted successfully.")


# Notifications
@router.get("/api/notifications")
def list_notifications(request: Request, svc: Services = Depends(get_services)):
    return list_response(svc.notifications, request, "notifications")


@router.post("/api/notifications/mark-all-read")
def mark_all_notifications_read(svc: Services = Depends(get_services)):
    count = svc.notifications.mark_all_read()
    return respond({"updated": count}, "All notifications marked as read.")


@router.post("/api/notifications/cleanup")
def cleanup_notifications(days: int = Query(30, ge=1), svc: Services = Depends(get_services)):
    count = svc.notifications.delete_older_than(days)
    return respond({"deleted": count}, f"Deleted {count} notifications older than {days} days.")


@router.patch("/api/notifications/{notification_id}")
def update_notification(notification_id: str, payload: NotificationUpdate, svc: Services = Depends(get_services)):
    notification = found(svc.notifications.set_read(notification_id, payload.read), "Notification", notification_id)
    return respond(notification, "Notification updated successfully.")


@router.delete("/api/notifications/{notification_id}")
def delete_notification(notification_id: str, svc: Services = Depends(get_services)):
    found(svc.notifications.delete(notification_id), "Notification", notification_id)
    return respond(message="Notification deleted successfully.")


# Public form helpers
@router.post("/api/forms/{form_name}/validate")
def check_form(form_name: str, payload: dict):
    errors = validate_form(form_name, payload)
    if errors:
        raise ValidationFailed("Validation Error", errors=errors)
    return respond(message="Form is valid.")


@router.get("/api/forms/{form_name}/prefill")
def prefill_form(
    form_name: str,
    productId: Optional[str] = None,
    productTypeCategory: Optional[str] = None,
    svc: Services = Depends(get_services),
):
    flow = PrefillFlow(svc.db, form_name)
    flow.start(productId, productTypeCategory)
    return respond(flow.as_dict(), flow.notice)


# Optional schemas endpoint for viewers
@router.get("/schema")
def get_schema():
    return {"collections": COLLECTIONS}


def create_app(settings: Optional[Settings] = None, db=None, image_store: Optional[ImageStore] = None,
               payment_provider: Optional[TransferProvider] = None,
               mailer: Optional[Mailer] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    database = None
    if db is None:
        database = connect(settings)
        db = database.db

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            ensure_indexes(db)
        except PyMongoError as exc:
            logger.error("Could not create database indexes: %s", exc)
        yield
        if database is not None:
            database.close()

    app = FastAPI(title="Leather Commerce API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    image_store = image_store or CloudinaryImageStore(settings)
    mailer = mailer or mailer_from_settings(settings)
    notifications = NotificationService(db)
    app.state.settings = settings
    app.state.db = db
    app.state.services = Services(
        db=db,
        finished_products=FinishedProductService(db, image_store),
        raw_leather=RawLeatherService(db, image_store),
        product_types=TaxonomyService(db, "producttype", "Product type"),
        raw_leather_types=TaxonomyService(db, "rawleathertype", "Raw leather type"),
        quotes=QuoteService(db, notifications, mailer),
        samples=SampleService(db, notifications, mailer),
        custom_manufacturing=CustomManufacturingService(db, image_store, notifications),
        messages=MessageService(db, notifications, mailer),
        notifications=notifications,
        payments=payment_provider or provider_from_settings(settings),
    )
    app.include_router(router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
