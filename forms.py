"""
Public form flows

The quote, sample, custom manufacturing and contact forms all validate against
the same pydantic models the create endpoints use. This module adds the two
small state machines the public pages drive: pre-filling a form from a catalog
item, and the sample request's pay-then-submit sequence.
"""

import logging
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from errors import AppError, FlowStateError, NotFoundError, PaymentRequiredError, format_validation_errors
from leads import SampleService, find_catalog_item
from payments import TransferProvider
from schemas import ContactForm, CustomManufacturingForm, QuoteRequestForm, SampleRequestForm, SampleRequestSubmission
from shipping import SUPPORTED_CURRENCY

logger = logging.getLogger(__name__)

FORMS: Dict[str, Type[BaseModel]] = {
    "quote": QuoteRequestForm,
    "sample": SampleRequestForm,
    "custom-manufacturing": CustomManufacturingForm,
    "contact": ContactForm,
}

CATEGORY_LABELS = {"finished-product": "Finished Product", "raw-leather": "Raw Leather"}
PREFILL_FAILED_NOTICE = "Failed to pre-fill product details. Product not found or API error."


def form_model(form_name: str) -> Type[BaseModel]:
    try:
        return FORMS[form_name]
    except KeyError:
        raise NotFoundError(f"Unknown form '{form_name}'.")


def validate_form(form_name: str, data: dict) -> list:
    """Return the [{path, message}] problems with a form submission, [] when it is valid."""
    try:
        form_model(form_name).model_validate(data)
    except ValidationError as exc:
        return format_validation_errors(exc.errors())
    return []


def parse_form_fields(items: Iterable[Tuple[str, object]]) -> Tuple[dict, list]:
    """Split multipart items into text fields and uploads.

    Repeated ``key[]`` entries are collected into a list under ``key``.
    """
    fields, files = {}, []
    for key, value in items:
        if hasattr(value, "filename") and hasattr(value, "read"):
            files.append(value)
        elif key.endswith("[]"):
            fields.setdefault(key[:-2], []).append(value)
        else:
            fields[key] = value
    logger.debug("Parsed form data: fields=%s files=%d", sorted(fields), len(files))
    return fields, files


def _join(values) -> str:
    return ", ".join(values or [])


def _quote_prefill(category: str, item: dict) -> dict:
    if category == "finished-product":
        quantity, unit = item.get("moq") or 1, item.get("priceUnit") or "units"
    else:
        quantity, unit = item.get("minOrderQuantity") or 1, item.get("priceUnit") or "sq ft"
    return {
        "itemId": str(item["_id"]),
        "itemName": item.get("name", ""),
        "itemTypeCategory": category,
        "quantity": quantity,
        "quantityUnit": unit,
        "additionalComments": f"Quote request for: {item.get('name', '')}",
    }


def _sample_prefill(category: str, item: dict) -> dict:
    name = item.get("name", "")
    if category == "finished-product":
        material, finish, colors = item.get("materialUsed", ""), "", _join(item.get("colorVariants"))
    else:
        material, finish, colors = item.get("leatherType", ""), item.get("finish", ""), _join(item.get("colors"))
    return {
        "productId": str(item["_id"]),
        "productName": name,
        "productTypeCategory": category,
        "sampleType": "finished-products" if category == "finished-product" else "raw-leather",
        "materialPreference": material,
        "finishType": finish,
        "colorPreferences": colors,
        "specificRequests": f"Sample request for: {name} ({CATEGORY_LABELS[category]})",
    }


PREFILLERS = {"quote": _quote_prefill, "sample": _sample_prefill}


class PrefillState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PREFILLED = "prefilled"
    FETCH_FAILED = "fetchFailed"


class PrefillFlow:
    """Pre-fill a public form from the catalog item named in the page's query string.

    The lookup runs at most once per flow; later calls to start() leave the
    state alone. A failed lookup leaves the form blank and sets ``notice`` to
    the message shown to the customer.
    """

    def __init__(self, db, form_name: str):
        if form_name not in PREFILLERS:
            raise NotFoundError(f"Form '{form_name}' does not support pre-filling.")
        self.db = db
        self.form_name = form_name
        self.state = PrefillState.IDLE
        self.values: dict = {}
        self.notice: Optional[str] = None
        self._started = False

    def start(self, item_id: Optional[str], category: Optional[str]) -> PrefillState:
        if self._started:
            return self.state
        self._started = True
        if not item_id or not category:
            return self.state

        self.state = PrefillState.FETCHING
        found_category, item = None, None
        if category in CATEGORY_LABELS:
            found_category, item = find_catalog_item(self.db, item_id, category)
        if item is None:
            logger.warning("Could not pre-fill %s form from %s %s", self.form_name, category, item_id)
            self.state = PrefillState.FETCH_FAILED
            self.notice = PREFILL_FAILED_NOTICE
            return self.state

        self.values = PREFILLERS[self.form_name](found_category, item)
        self.notice = f"Pre-filled from {item.get('name', '')}"
        self.state = PrefillState.PREFILLED
        return self.state

    def as_dict(self) -> dict:
        return {"state": self.state.value, "values": self.values, "notice": self.notice}


class PaymentStep(str, Enum):
    FORM_EDITING = "formEditing"
    SUBMITTING_FOR_PAYMENT_INSTRUCTIONS = "submittingForPaymentInstructions"
    AWAITING_PAYMENT_CONFIRMATION = "awaitingPaymentConfirmation"
    SUBMITTING_FINAL_REQUEST = "submittingFinalRequest"
    DONE = "done"


class SamplePaymentFlow:
    """Sample request checkout: get transfer instructions, confirm the transfer, save the request."""

    def __init__(self, provider: TransferProvider, samples: SampleService):
        self.provider = provider
        self.samples = samples
        self.step = PaymentStep.FORM_EDITING
        self.form: Optional[SampleRequestForm] = None
        self.transfer: Optional[dict] = None
        self.transfer_id: Optional[str] = None
        self.record: Optional[dict] = None

    @classmethod
    def resume(cls, provider: TransferProvider, samples: SampleService,
               submission: SampleRequestSubmission) -> "SamplePaymentFlow":
        """Pick the flow up at payment confirmation for a form that already
        carries its transfer id."""
        flow = cls(provider, samples)
        flow.form = submission
        flow.transfer_id = submission.wiseTransferId
        flow.step = PaymentStep.AWAITING_PAYMENT_CONFIRMATION
        return flow

    def _expect(self, step: PaymentStep, action: str):
        if self.step != step:
            raise FlowStateError(f"Cannot {action} while the sample request is in step '{self.step.value}'.")

    def request_instructions(self, form: SampleRequestForm) -> dict:
        self._expect(PaymentStep.FORM_EDITING, "request payment instructions")
        self.step = PaymentStep.SUBMITTING_FOR_PAYMENT_INSTRUCTIONS
        try:
            transfer = self.provider.create_transfer(
                form.country,
                SUPPORTED_CURRENCY,
                email=form.email,
                contact_person=form.contactPerson,
                company_name=form.companyName,
                metadata={"productId": form.productId},
            )
        except AppError:
            self.step = PaymentStep.FORM_EDITING
            raise
        self.form = form
        self.transfer = transfer
        self.transfer_id = transfer["transferId"]
        self.step = PaymentStep.AWAITING_PAYMENT_CONFIRMATION
        return transfer

    def confirm(self, transfer_id: Optional[str] = None) -> dict:
        self._expect(PaymentStep.AWAITING_PAYMENT_CONFIRMATION, "confirm payment")
        transfer_id = transfer_id or self.transfer_id
        status = self.provider.check_transfer(transfer_id)
        if not self.provider.is_funded(status.get("status")):
            logger.info("Transfer %s not funded yet (%s)", transfer_id, status.get("status"))
            return status
        self.transfer_id = transfer_id
        self.step = PaymentStep.SUBMITTING_FINAL_REQUEST
        return status

    def submit(self) -> dict:
        self._expect(PaymentStep.SUBMITTING_FINAL_REQUEST, "submit the sample request")
        data = self.form.model_dump(exclude={"wiseTransferId"})
        submission = SampleRequestSubmission(**data, wiseTransferId=self.transfer_id)
        self.record = self.samples.create(submission)
        self.step = PaymentStep.DONE
        return self.record


def submit_sample_request(provider: TransferProvider, samples: SampleService,
                          submission: SampleRequestSubmission) -> dict:
    flow = SamplePaymentFlow.resume(provider, samples, submission)
    status = flow.confirm()
    if flow.step != PaymentStep.SUBMITTING_FINAL_REQUEST:
        raise PaymentRequiredError(
            f"Transfer {submission.wiseTransferId} has not been funded yet (status: {status.get('status')})."
        )
    return flow.submit()
