"""
Lead requests and contact messages

Quote and sample requests get a short public reference (requestNumber) on top
of the database id. Sample requests copy the name of the catalog item they
refer to at submission time, so later edits to the item do not show up in the
request.
"""

import logging
import secrets
import string
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import serialize_doc, to_object_id, utcnow
from errors import AlreadyExistsError
from filters import FieldKind, FilterField, ListSpec, sort_allow_list
from mailer import LogMailer, Mailer, send_best_effort
from notifications import NotificationService
from schemas import ContactForm, QuoteRequestForm, QuoteRequestUpdate, SampleRequestSubmission, SampleRequestUpdate
from services import RecordService
from shipping import shipping_fee_dollars

logger = logging.getLogger(__name__)

REQUEST_NUMBER_ALPHABET = string.digits + string.ascii_uppercase
REQUEST_NUMBER_LENGTH = 8
TEST_TRANSFER_PREFIX = "test-transfer-"

CATALOG_COLLECTIONS = {
    "finished-product": "finishedproduct",
    "raw-leather": "rawleather",
}

MESSAGE_SUBJECTS = {
    "quote": "Quote Request",
    "sample": "Sample Request",
    "custom": "Custom Manufacturing Inquiry",
    "partnership": "Partnership Proposal",
    "general": "General Inquiry",
    "support": "Support Request",
    "complaint": "Customer Complaint",
}
HIGH_PRIORITY_INQUIRIES = ("support", "complaint")


def generate_request_number(collection) -> str:
    while True:
        number = "".join(secrets.choice(REQUEST_NUMBER_ALPHABET) for _ in range(REQUEST_NUMBER_LENGTH))
        if collection.count_documents({"requestNumber": number}) == 0:
            return number


def find_catalog_item(db, item_id, category: Optional[str] = None) -> Tuple[Optional[str], Optional[dict]]:
    """Look up a finished product or raw leather by id.

    Without a category both collections are tried, finished products first.
    Returns (category, document), or (None, None) when nothing matches.
    """
    oid = to_object_id(item_id)
    if oid is None:
        return None, None
    categories = [category] if category else list(CATALOG_COLLECTIONS)
    for cat in categories:
        collection_name = CATALOG_COLLECTIONS.get(cat)
        if collection_name is None:
            continue
        doc = db[collection_name].find_one({"_id": oid})
        if doc:
            return cat, doc
    return None, None


def message_subject(inquiry_type: str) -> str:
    return MESSAGE_SUBJECTS.get(inquiry_type, "New Message")


QUOTE_REQUEST_LIST = ListSpec(
    name="quote requests",
    fields={
        "status": FilterField(
            FieldKind.EXACT, "status",
            choices=("requested", "approved", "rejected", "paid", "dispatched", "cancelled"),
        ),
        "destinationCountry": FilterField(FieldKind.EXACT, "destinationCountry"),
        "itemTypeCategory": FilterField(
            FieldKind.EXACT, "itemTypeCategory", choices=("finished-product", "raw-leather", "custom")
        ),
    },
    search_fields=("customerName", "companyName", "itemName", "requestNumber"),
    sort_fields=sort_allow_list(
        "status", "customerName", "companyName", "itemName", "proposedTotalPrice", "requestNumber",
    ),
    id_searchable=True,
)

SAMPLE_REQUEST_LIST = ListSpec(
    name="sample requests",
    fields={
        "status": FilterField(
            FieldKind.EXACT, "paymentStatus",
            choices=("pending", "paid", "processing", "shipped", "delivered", "cancelled", "failed", "refunded"),
        ),
        "sampleType": FilterField(FieldKind.EXACT, "sampleType", choices=("raw-leather", "finished-products", "both")),
        "country": FilterField(FieldKind.EXACT, "country"),
    },
    search_fields=("companyName", "contactPerson", "email", "requestNumber"),
    sort_fields=sort_allow_list(
        "paymentStatus", "companyName", "contactPerson", "country", "shippingFee", "requestNumber",
    ),
    id_searchable=True,
)

MESSAGE_LIST = ListSpec(
    name="messages",
    fields={
        "status": FilterField(FieldKind.EXACT, "status", choices=("unread", "read", "replied", "archived")),
        "priority": FilterField(FieldKind.EXACT, "priority", choices=("low", "medium", "high")),
        "category": FilterField(FieldKind.EXACT, "inquiryType"),
    },
    search_fields=("customerName", "customerEmail", "subject", "message"),
    sort_fields=sort_allow_list("status", "priority", "customerName", "inquiryType"),
)


def _format_status(status: str) -> str:
    return " ".join(word.capitalize() for word in status.replace("_", " ").split())


def quote_received_email(quote: dict) -> Tuple[str, str]:
    ref = quote["requestNumber"]
    subject = f"PureGrain: Your Quote Request (Ref: {ref}) Received"
    text = (
        f"Dear {quote['customerName']},\n\n"
        f"Thank you for your recent quote request ({quote['itemName']}, Quantity: {quote['quantity']} "
        f"{quote['quantityUnit']}). We have received your request (Reference: {ref}) and are currently "
        f"reviewing it.\n\nWe will get back to you shortly with an update.\n\n"
        f"Best regards,\nThe PureGrain Team"
    )
    return subject, text


def quote_status_email(original: dict, quote: dict) -> Tuple[str, str]:
    ref, item, status = quote["requestNumber"], quote["itemName"], quote["status"]
    greeting = f"Dear {quote['customerName']},\n\n"
    if status == "approved":
        subject = f'PureGrain: Your Quote for "{item}" Has Been Approved! (Ref: {ref})'
        body = (
            f'We are pleased to inform you that your quote request for "{item}" (Reference: {ref}) '
            f"has been approved.\n\n"
        )
        if quote.get("proposedTotalPrice"):
            body += f"Proposed Total Price: ${quote['proposedTotalPrice']:.2f} USD\n"
    elif status == "rejected":
        subject = f'PureGrain: Update on Your Quote Request for "{item}" (Ref: {ref})'
        body = (
            f'After careful consideration, we regret to inform you that your quote request for "{item}" '
            f"(Reference: {ref}) could not be approved at this time.\n\n"
        )
        if quote.get("adminComments"):
            body += f"Our comments: {quote['adminComments']}\n"
    elif status == "paid":
        subject = f"PureGrain: Payment Confirmation (Ref: {ref})"
        body = (
            f"Thank you! We have received your payment for quote request (Reference: {ref}). "
            f"Your order is now confirmed and will proceed to the next stage.\n"
        )
    elif status == "dispatched":
        subject = f'PureGrain: Your Order for "{item}" Has Been Dispatched! (Ref: {ref})'
        body = f'Great news! Your order for "{item}" (Reference: {ref}) has been dispatched.\n\n'
        if quote.get("trackingNumber"):
            body += f"Tracking Number: {quote['trackingNumber']}\n"
        if quote.get("trackingLink"):
            body += f"Tracking Link: {quote['trackingLink']}\n"
    elif status == "cancelled":
        subject = f'PureGrain: Your Quote Request for "{item}" Has Been Cancelled (Ref: {ref})'
        body = f'We regret to inform you that your quote request for "{item}" (Reference: {ref}) has been cancelled.\n\n'
        if quote.get("adminComments"):
            body += f"Reason: {quote['adminComments']}\n\n"
        body += "If this was an error or you wish to discuss, please contact us.\n"
    else:
        subject = f'PureGrain: Quote Request Status Update for "{item}" (Ref: {ref})'
        body = (
            f'The status of your quote request for "{item}" (Reference: {ref}) has been updated from '
            f"{_format_status(original.get('status', ''))} to {_format_status(status)}.\n"
        )
    return subject, f"{greeting}{body}\nBest regards,\nThe PureGrain Team"


SAMPLE_STATUS_NOTES = {
    "pending": "Your request is currently pending. We might need some additional information or it is awaiting "
               "manual review.",
    "processing": "Your sample request is now being processed. We are preparing your samples for shipment.",
    "shipped": "Your sample request has been shipped.",
    "delivered": "Your sample request has been delivered. We hope you are satisfied with your samples.",
    "cancelled": "Your sample request has been cancelled. If you have any questions or this was an error, "
                 "please contact us.",
    "failed": "Your sample request payment has failed. Please check your payment method or contact us to resolve "
              "this issue.",
    "refunded": "Your sample request has been refunded. The refund should appear in your account within "
                "5-10 business days.",
}


def _sample_title(sample: dict) -> str:
    return sample.get("productName") or sample.get("sampleType") or "your sample request"


def sample_paid_email(sample: dict) -> Tuple[str, str]:
    ref = sample["requestNumber"]
    subject = f"PureGrain: Your Sample Request Payment Confirmed & Order Placed (Ref: {ref})!"
    text = (
        f"Dear {sample['contactPerson']},\n\n"
        f'Thank you for your payment! We have received your payment for your sample request for '
        f'"{_sample_title(sample)}" (Ref: {ref}). Your order is now placed and we will begin processing it '
        f"shortly.\n\nWe will notify you once your samples are shipped.\n\n"
        f"Best regards,\nThe PureGrain Team"
    )
    return subject, text


def sample_status_email(original: dict, sample: dict) -> Tuple[str, str]:
    ref, status = sample["requestNumber"], sample["paymentStatus"]
    subject = f"PureGrain: Status Update for Your Sample Request (Ref: {ref})"
    text = (
        f"Dear {sample['contactPerson']},\n\n"
        f'The status of your sample request for "{_sample_title(sample)}" (Ref: {ref}) has been updated from '
        f"{_format_status(original.get('paymentStatus', ''))} to {_format_status(status)}.\n\n"
        f"{SAMPLE_STATUS_NOTES.get(status, 'Please check your customer portal for more details.')}\n"
    )
    if status == "shipped" and sample.get("shippingTrackingLink"):
        text += f"\nTracking Link: {sample['shippingTrackingLink']}\n"
    return subject, f"{text}\nBest regards,\nThe PureGrain Team"


def sample_tracking_email(sample: dict) -> Tuple[str, str]:
    ref, title = sample["requestNumber"], _sample_title(sample)
    subject = f'PureGrain: Your Sample Order for "{title}" Has Been Shipped! (Ref: {ref})'
    text = (
        f"Dear {sample['contactPerson']},\n\n"
        f'Great news! Your sample order for "{title}" (Ref: {ref}) has been shipped.\n'
        f"Tracking Link: {sample['shippingTrackingLink']}\n\n"
        f"We hope you enjoy your samples from PureGrain."
    )
    return subject, text


class LeadService(RecordService, ABC):
    def __init__(self, db, notifications: NotificationService, mailer: Optional[Mailer] = None):
        super().__init__(db)
        self.notifications = notifications
        self.mailer = mailer or LogMailer()

    @abstractmethod
    def _admin_link(self, record_id: str) -> str:
        """Back office page for one record."""

    def _email(self, to: Optional[str], message: Tuple[str, str]) -> bool:
        subject, text = message
        return send_best_effort(self.mailer, to, subject, text)


class QuoteService(LeadService):
    collection_name = "quoterequest"
    label = "Quote request"
    list_spec = QUOTE_REQUEST_LIST

    def _admin_link(self, record_id: str) -> str:
        return f"/admin/quotes/{record_id}"

    def create(self, form: QuoteRequestForm) -> dict:
        data = form.model_dump(exclude_none=True)
        data["requestNumber"] = generate_request_number(self.collection)
        data["status"] = "requested"
        record = super().create(data)
        self.notifications.notify(
            title=f"New Quote Request from {record['companyName']}",
            message=(
                f"{record['customerName']} requested a quote for {record['quantity']} "
                f"{record['quantityUnit']} of {record['itemName']} (Ref: {record['requestNumber']})."
            ),
            type="new_quote_request",
            link=self._admin_link(record["id"]),
            related_id=record["id"],
        )
        self._email(record["customerEmail"], quote_received_email(record))
        return record

    def update(self, record_id, changes: QuoteRequestUpdate) -> Optional[dict]:
        original = self._find(record_id)
        if original is None:
            return None
        data = changes.model_dump(exclude_unset=True)
        if data.get("status") == "dispatched" and not original.get("dispatchedAt") and not data.get("dispatchedAt"):
            data["dispatchedAt"] = utcnow()
        record = super().update(record_id, data)
        if record and record.get("status") != original.get("status"):
            self.notifications.notify(
                title=f"Quote Status Update: {record['requestNumber']}",
                message=f"Quote request from {record['companyName']} status changed to {record['status']}.",
                type="quote_status_update",
                link=self._admin_link(record["id"]),
                related_id=record["id"],
            )
            self._email(record["customerEmail"], quote_status_email(original, record))
        return record


class SampleService(LeadService):
    collection_name = "samplerequest"
    label = "Sample request"
    list_spec = SAMPLE_REQUEST_LIST

    def _admin_link(self, record_id: str) -> str:
        return f"/admin/samples/{record_id}"

    def create(self, submission: SampleRequestSubmission) -> dict:
        data = submission.model_dump(exclude_none=True)

        if data.get("productId"):
            category, item = find_catalog_item(self.db, data["productId"], data.get("productTypeCategory"))
            if item is None:
                logger.warning("Sample request refers to unknown catalog item %s", data["productId"])
                data.pop("productTypeCategory", None)
            else:
                data["productName"] = item.get("name")
                data["productTypeCategory"] = category

        data["shippingFee"] = shipping_fee_dollars(data["country"])
        data["paymentStatus"] = (
            "pending" if data["wiseTransferId"].startswith(TEST_TRANSFER_PREFIX) else "paid"
        )
        data["requestNumber"] = generate_request_number(self.collection)
        try:
            record = super().create(data)
        except DuplicateKeyError:
            raise AlreadyExistsError("A sample request for this transfer already exists.")
        logger.info("Sample request %s saved (Req# %s)", record["id"], record["requestNumber"])

        self.notifications.notify(
            title=f"New Sample Request from {record['companyName']}",
            message=(
                f"A new sample request (Ref: {record['requestNumber']}) has been received from "
                f"{record['contactPerson']} ({record['email']})."
            ),
            type="new_sample_request",
            link=self._admin_link(record["id"]),
            related_id=record["id"],
        )
        if record["paymentStatus"] == "paid":
            self._email(record["email"], sample_paid_email(record))
        return record

    def update(self, record_id, changes: SampleRequestUpdate) -> Optional[dict]:
        original = self._find(record_id)
        if original is None:
            return None

        update = {"$set": {"paymentStatus": changes.status, "updatedAt": utcnow()}}
        if "shippingTrackingLink" in changes.model_fields_set:
            update["$set"]["shippingTrackingLink"] = changes.shippingTrackingLink
        if changes.status == "shipped":
            if not original.get("shippedAt"):
                update["$set"]["shippedAt"] = utcnow()
        elif original.get("shippedAt"):
            update["$unset"] = {"shippedAt": ""}

        doc = self.collection.find_one_and_update(
            {"_id": original["_id"]}, update, return_document=ReturnDocument.AFTER
        )
        record = serialize_doc(doc)
        logger.info("Sample request %s updated to %s", record_id, changes.status)

        if original.get("paymentStatus") != changes.status:
            self.notifications.notify(
                title=f"Sample Status Update: {record['requestNumber']}",
                message=f"Sample request from {record['companyName']} status changed to {changes.status}.",
                type="sample_status_update",
                link=self._admin_link(record["id"]),
                related_id=record["id"],
            )
            self._email(record["email"], sample_status_email(original, record))
        elif (
            changes.status == "shipped"
            and record.get("shippingTrackingLink")
            and record.get("shippingTrackingLink") != original.get("shippingTrackingLink")
        ):
            self._email(record["email"], sample_tracking_email(record))
        return record


class MessageService(LeadService):
    collection_name = "message"
    label = "Message"
    list_spec = MESSAGE_LIST

    def _admin_link(self, record_id: str) -> str:
        return "/admin/messages"

    def create(self, form: ContactForm) -> dict:
        record = super().create({
            "customerName": form.fullName,
            "customerEmail": form.email,
            "customerPhone": form.phone,
            "customerCompany": form.companyName,
            "customerCountry": form.country,
            "inquiryType": form.inquiryType,
            "subject": message_subject(form.inquiryType),
            "message": form.message,
            "status": "unread",
            "priority": "high" if form.inquiryType in HIGH_PRIORITY_INQUIRIES else "medium",
        })
        self.notifications.notify(
            title=f"New Message: {record['subject']}",
            message=f"{record['customerName']} ({record['customerEmail']}) sent a new message.",
            type="new_message",
            link=self._admin_link(record["id"]),
            related_id=record["id"],
        )
        return record

    def set_status(self, record_id, status: str, reply_text: Optional[str] = None) -> Optional[dict]:
        """Change a message's status. Moving to ``replied`` with a reply text
        also records the reply and emails it to the customer."""
        changes = {"status": status}
        if status == "replied" and reply_text:
            changes["replyText"] = reply_text
            changes["repliedAt"] = utcnow()
        record = super().update(record_id, changes)
        if record and "replyText" in changes:
            self._email(record["customerEmail"], (f"Re: {record['subject']}", reply_text))
        return record
