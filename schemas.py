"""
Database Schemas

MongoDB collection schemas as Pydantic models. These are used for data
validation both when a record is written and, for the public forms, when a
client asks for its input to be checked before submitting.

Each Pydantic model represents a collection in your database.
Model name is converted to lowercase for the collection name:
- FinishedProduct -> "finishedproduct" collection
- RawLeather -> "rawleather" collection
- QuoteRequest -> "quoterequest" collection
"""

import json
import re
from datetime import datetime
from typing import Annotated, ClassVar, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, field_validator

from shipping import COUNTRIES

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
OBJECT_ID_PATTERN = r"^[0-9a-fA-F]{24}$"


def _form_bool(value):
    # multipart forms send "" for an unchecked box
    if value == "":
        return False
    return value


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


FormBool = Annotated[bool, BeforeValidator(_form_bool)]
OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]


def optional_text(max_length: int):
    return Annotated[Optional[Annotated[str, Field(max_length=max_length)]], BeforeValidator(_blank_to_none)]


def _check_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email format.")
    return value


def _json_list(value):
    # multipart submissions carry nested lists as a JSON string
    if isinstance(value, str):
        return json.loads(value) if value.strip() else []
    return value


Email = Annotated[EmailStr, AfterValidator(_check_email)]
ObjectIdRef = Annotated[Optional[Annotated[str, Field(pattern=OBJECT_ID_PATTERN)]], BeforeValidator(_blank_to_none)]


class Record(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class PartialUpdate(Record):
    """Base for PATCH-style bodies: a field may be left out, but only the
    fields named in ``nullable`` may be sent as null."""

    nullable: ClassVar[tuple] = ()

    @field_validator("*", mode="before")
    @classmethod
    def reject_null(cls, value, info):
        if value is None and info.field_name not in cls.nullable:
            raise ValueError(f"{info.field_name} cannot be null.")
        return value


Availability = Literal["In Stock", "Made to Order", "Limited Stock"]
Animal = Literal["Cow", "Buffalo", "Goat", "Sheep", "Exotic"]
Finish = Literal["Aniline", "Semi-Aniline", "Pigmented", "Pull-up", "Crazy Horse", "Waxed", "Nappa", "Embossed"]
QuoteStatus = Literal["requested", "approved", "rejected", "paid", "dispatched", "cancelled"]
ItemTypeCategory = Literal["finished-product", "raw-leather", "custom"]
CatalogCategory = Literal["finished-product", "raw-leather"]
PaymentStatus = Literal["pending", "paid", "processing", "shipped", "delivered", "cancelled", "failed", "refunded"]
SampleType = Literal["raw-leather", "finished-products", "both"]
CustomRequestStatus = Literal["Pending", "Reviewed", "Contacted", "Completed", "Archived"]
MessageStatus = Literal["unread", "read", "replied", "archived"]
Priority = Literal["low", "medium", "high"]
NotificationType = Literal[
    "info", "warning", "error", "success",
    "new_message", "new_sample_request", "new_custom_request", "sample_status_update",
    "payment_confirmed", "payment_failed", "new_quote_request", "quote_status_update",
]


# Catalog schemas
class PriceTier(BaseModel):
    minQty: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


PriceTiers = Annotated[List[PriceTier], BeforeValidator(_json_list)]


class FinishedProduct(Record):
    """
    Finished products collection schema
    Collection name: "finishedproduct"
    """
    name: str = Field(..., min_length=3)
    productType: str = Field(..., min_length=1, description="Name of a product type, not its id")
    materialUsed: str = Field(..., min_length=3)
    dimensions: str = Field(..., min_length=1)
    moq: int = Field(..., ge=1, description="Minimum order quantity")
    colorVariants: List[str] = Field(default_factory=list)
    description: str = Field(..., min_length=10)
    images: List[str] = Field(..., min_length=1, description="Hosted image URLs")
    isFeatured: FormBool = False
    sampleAvailable: FormBool = False
    pricePerUnit: float = Field(..., gt=0)
    priceUnit: str = Field(..., min_length=1, description="e.g. per piece, per dozen")
    currency: str = "USD"
    availability: Availability = "Made to Order"
    stockCount: int = Field(0, ge=0)
    category: OptionalText = None
    tags: List[str] = Field(default_factory=list)
    isActive: FormBool = True
    isArchived: FormBool = False


class FinishedProductUpdate(PartialUpdate):
    nullable = ("category",)

    name: Optional[str] = Field(None, min_length=3)
    productType: Optional[str] = Field(None, min_length=1)
    materialUsed: Optional[str] = Field(None, min_length=3)
    dimensions: Optional[str] = Field(None, min_length=1)
    moq: Optional[int] = Field(None, ge=1)
    colorVariants: Optional[List[str]] = None
    description: Optional[str] = Field(None, min_length=10)
    images: Optional[List[str]] = None
    isFeatured: Optional[FormBool] = None
    sampleAvailable: Optional[FormBool] = None
    pricePerUnit: Optional[float] = Field(None, gt=0)
    priceUnit: Optional[str] = Field(None, min_length=1)
    currency: Optional[str] = None
    availability: Optional[Availability] = None
    stockCount: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    isActive: Optional[FormBool] = None
    isArchived: Optional[FormBool] = None


class RawLeather(Record):
    """
    Raw leather collection schema
    Collection name: "rawleather"
    """
    name: str = Field(..., min_length=3)
    leatherType: str = Field(..., min_length=1, description="Name of a raw leather type")
    animal: Animal
    finish: Finish
    thickness: str = Field(..., min_length=1)
    size: str = Field(..., min_length=1)
    colors: List[str] = Field(default_factory=list)
    minOrderQuantity: int = Field(..., ge=1)
    sampleAvailable: FormBool = False
    images: List[str] = Field(..., min_length=1)
    description: str = Field(..., min_length=10)
    isFeatured: FormBool = False
    isArchived: FormBool = False
    pricePerSqFt: float = Field(..., ge=0)
    currency: str = "USD"
    priceTier: PriceTiers = Field(default_factory=list)
    priceUnit: str = Field(..., min_length=1)
    discountAvailable: FormBool = False
    negotiable: FormBool = False


class RawLeatherUpdate(PartialUpdate):
    name: Optional[str] = Field(None, min_length=3)
    leatherType: Optional[str] = Field(None, min_length=1)
    animal: Optional[Animal] = None
    finish: Optional[Finish] = None
    thickness: Optional[str] = Field(None, min_length=1)
    size: Optional[str] = Field(None, min_length=1)
    colors: Optional[List[str]] = None
    minOrderQuantity: Optional[int] = Field(None, ge=1)
    sampleAvailable: Optional[FormBool] = None
    images: Optional[List[str]] = None
    description: Optional[str] = Field(None, min_length=10)
    isFeatured: Optional[FormBool] = None
    isArchived: Optional[FormBool] = None
    pricePerSqFt: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    priceTier: Optional[PriceTiers] = None
    priceUnit: Optional[str] = Field(None, min_length=1)
    discountAvailable: Optional[FormBool] = None
    negotiable: Optional[FormBool] = None


class RemoveImagesRequest(BaseModel):
    imageUrls: List[str] = Field(default_factory=list)


# Taxonomy schemas (name unique)
class ProductType(Record):
    name: str = Field(..., min_length=1)


class RawLeatherType(Record):
    name: str = Field(..., min_length=1)


# Lead request schemas
class QuoteRequestForm(Record):
    """Customer-facing quote request form. Collection name: "quoterequest" """
    itemName: str = Field(..., min_length=1, max_length=200)
    itemId: ObjectIdRef = None
    itemTypeCategory: ItemTypeCategory
    customerName: str = Field(..., min_length=1, max_length=100)
    customerEmail: Email
    companyName: str = Field(..., min_length=1, max_length=200)
    customerPhone: optional_text(20) = None
    destinationCountry: str
    quantity: int = Field(..., ge=1)
    quantityUnit: str = Field(..., min_length=1, max_length=50)
    additionalComments: optional_text(1000) = None

    @field_validator("destinationCountry")
    @classmethod
    def known_country(cls, value):
        if value not in COUNTRIES:
            raise ValueError("Destination country is required.")
        return value


class QuoteRequestUpdate(PartialUpdate):
    nullable = (
        "adminComments", "proposedPricePerUnit", "proposedTotalPrice", "paymentMethod",
        "trackingNumber", "trackingLink", "dispatchedAt",
    )

    status: Optional[QuoteStatus] = None
    adminComments: Optional[str] = Field(None, max_length=1000)
    proposedPricePerUnit: Optional[float] = Field(None, ge=0)
    proposedTotalPrice: Optional[float] = Field(None, ge=0)
    paymentMethod: Optional[Literal["100_advance_bank_transfer", "30_70_split_bank_transfer", "letter_of_credit"]] = None
    trackingNumber: Optional[str] = Field(None, max_length=100)
    trackingLink: Optional[str] = Field(None, max_length=200)
    dispatchedAt: Optional[datetime] = None


class SampleRequestForm(Record):
    """Customer-facing sample request form. Collection name: "samplerequest" """
    companyName: str = Field(..., min_length=1, max_length=100)
    contactPerson: str = Field(..., min_length=1, max_length=100)
    email: Email
    phone: optional_text(20) = None
    country: str = Field(..., min_length=1)
    urgency: Literal["standard", "express", "rush"] = "standard"
    address: str = Field(..., min_length=1, max_length=500)
    sampleType: SampleType
    quantitySamples: OptionalText = None
    materialPreference: optional_text(100) = None
    finishType: optional_text(100) = None
    colorPreferences: optional_text(200) = None
    specificRequests: optional_text(1000) = None
    businessType: Literal["wholesaler", "retailer", "manufacturer", "distributor", "designer", "other"] = "other"
    intendedUse: Literal["production", "resale", "testing", "development", "other"] = "other"
    futureVolume: Literal["small", "medium", "large", "ongoing", "unsure"] = "unsure"
    productId: ObjectIdRef = None
    productTypeCategory: Annotated[Optional[CatalogCategory], BeforeValidator(_blank_to_none)] = None


class SampleRequestSubmission(SampleRequestForm):
    wiseTransferId: str = Field(..., min_length=1)


class SampleRequestUpdate(Record):
    status: PaymentStatus
    shippingTrackingLink: OptionalText = None


class CustomManufacturingForm(Record):
    """Custom manufacturing request. Collection name: "custommanufacturingrequest" """
    companyName: str = Field(..., min_length=1)
    contactPerson: str = Field(..., min_length=1)
    email: Email
    phone: OptionalText = None
    productType: str = Field(..., min_length=1)
    estimatedQuantity: str = Field(..., min_length=1)
    preferredMaterial: OptionalText = None
    colors: OptionalText = None
    timeline: OptionalText = None
    specifications: OptionalText = None
    budgetRange: OptionalText = None
    designFiles: List[str] = Field(default_factory=list)


class CustomManufacturingUpdate(PartialUpdate):
    nullable = ("phone", "preferredMaterial", "colors", "timeline", "specifications", "budgetRange")

    companyName: Optional[str] = Field(None, min_length=1)
    contactPerson: Optional[str] = Field(None, min_length=1)
    email: Optional[Email] = None
    phone: Optional[str] = None
    productType: Optional[str] = Field(None, min_length=1)
    estimatedQuantity: Optional[str] = Field(None, min_length=1)
    preferredMaterial: Optional[str] = None
    colors: Optional[str] = None
    timeline: Optional[str] = None
    specifications: Optional[str] = None
    budgetRange: Optional[str] = None
    designFiles: Optional[List[str]] = None
    status: Optional[CustomRequestStatus] = None


# Contact messages
class ContactForm(Record):
    fullName: str = Field(..., min_length=2)
    companyName: str = Field(..., min_length=2)
    email: Email
    phone: OptionalText = None
    country: str = Field(..., min_length=1)
    inquiryType: Literal["quote", "sample", "custom", "partnership", "general", "support", "complaint"] = "general"
    message: str = Field(..., min_length=10)


class MessageStatusUpdate(BaseModel):
    status: MessageStatus
    replyText: Optional[str] = Field(None, max_length=10000)


# Admin notifications
class Notification(Record):
    title: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    type: NotificationType = "info"
    read: bool = False
    link: Optional[str] = None
    relatedId: Optional[str] = None


class NotificationUpdate(BaseModel):
    read: bool
