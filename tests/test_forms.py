import pytest
import requests

from config import Settings
from conftest import product_data, raw_leather_data, sample_data
from errors import FlowStateError, NotFoundError, PaymentProviderError, PaymentRequiredError, ValidationFailed
from forms import (
    PREFILL_FAILED_NOTICE,
    PaymentStep,
    PrefillFlow,
    PrefillState,
    SamplePaymentFlow,
    parse_form_fields,
    submit_sample_request,
    validate_form,
)
from payments import MockTransferProvider, TransferProvider, WiseTransferProvider, provider_from_settings
from schemas import FinishedProduct, RawLeather, SampleRequestForm, SampleRequestSubmission
from shipping import shipping_fee_cents, shipping_fee_dollars


class FakeUpload:
    def __init__(self, filename):
        self.filename = filename

    async def read(self):
        return b""


def sample_form(**overrides):
    data = sample_data(**overrides)
    data.pop("wiseTransferId")
    return SampleRequestForm(**data)


def test_valid_contact_form():
    assert validate_form("contact", {
        "fullName": "Jo Park",
        "companyName": "Park Leather",
        "email": "jo@park.example",
        "country": "Japan",
        "message": "Do you ship samples to Osaka?",
    }) == []


def test_quote_form_problems_carry_field_paths():
    errors = validate_form("quote", {
        "itemName": "Wallet",
        "itemTypeCategory": "finished-product",
        "customerName": "Alex",
        "customerEmail": "not-an-email",
        "companyName": "Buyer Co",
        "destinationCountry": "Atlantis",
        "quantity": 0,
        "quantityUnit": "pieces",
    })
    paths = {error["path"] for error in errors}
    assert paths == {"customerEmail", "destinationCountry", "quantity"}
    assert {"path": "destinationCountry", "message": "Destination country is required."} in errors


def test_unknown_form():
    with pytest.raises(NotFoundError):
        validate_form("newsletter", {})


def test_parse_form_fields():
    front, back = FakeUpload("front.jpg"), FakeUpload("back.jpg")
    fields, files = parse_form_fields([
        ("name", "Tote"),
        ("colorVariants[]", "Black"),
        ("colorVariants[]", "Tan"),
        ("images", front),
        ("images", back),
    ])
    assert fields == {"name": "Tote", "colorVariants": ["Black", "Tan"]}
    assert files == [front, back]


def test_sample_prefill_from_finished_product(db, products):
    product = products.create(FinishedProduct(**product_data()))
    flow = PrefillFlow(db, "sample")

    assert flow.start(product["id"], "finished-product") == PrefillState.PREFILLED
    assert flow.values["productName"] == "Classic Bifold Wallet"
    assert flow.values["sampleType"] == "finished-products"
    assert flow.values["colorPreferences"] == "Black, Tan"
    assert flow.values["specificRequests"] == "Sample request for: Classic Bifold Wallet (Finished Product)"
    assert flow.notice == "Pre-filled from Classic Bifold Wallet"


def test_quote_prefill_from_raw_leather(db, raw_leather):
    leather = raw_leather.create(RawLeather(**raw_leather_data()))
    flow = PrefillFlow(db, "quote")
    flow.start(leather["id"], "raw-leather")

    assert flow.values == {
        "itemId": leather["id"],
        "itemName": "Crazy Horse Buffalo",
        "itemTypeCategory": "raw-leather",
        "quantity": 500,
        "quantityUnit": "per sq ft",
        "additionalComments": "Quote request for: Crazy Horse Buffalo",
    }


def test_prefill_runs_once(db, products):
    product = products.create(FinishedProduct(**product_data()))
    flow = PrefillFlow(db, "sample")
    flow.start("65a1b2c3d4e5f6a7b8c9d0e1", "finished-product")
    assert flow.state == PrefillState.FETCH_FAILED
    assert flow.notice == PREFILL_FAILED_NOTICE

    assert flow.start(product["id"], "finished-product") == PrefillState.FETCH_FAILED
    assert flow.values == {}


@pytest.mark.parametrize("item_id, category", [(None, "raw-leather"), ("65a1b2c3d4e5f6a7b8c9d0e1", None)])
def test_prefill_without_both_params_stays_idle(db, item_id, category):
    flow = PrefillFlow(db, "quote")
    assert flow.start(item_id, category) == PrefillState.IDLE
    assert flow.as_dict() == {"state": "idle", "values": {}, "notice": None}


def test_prefill_with_wrong_category_fails(db, products):
    product = products.create(FinishedProduct(**product_data()))
    flow = PrefillFlow(db, "quote")
    assert flow.start(product["id"], "raw-leather") == PrefillState.FETCH_FAILED


def test_prefill_unsupported_form(db):
    with pytest.raises(NotFoundError):
        PrefillFlow(db, "contact")


def test_sample_payment_flow(samples):
    flow = SamplePaymentFlow(MockTransferProvider(), samples)

    transfer = flow.request_instructions(sample_form())
    assert flow.step == PaymentStep.AWAITING_PAYMENT_CONFIRMATION
    assert transfer["amount"] == 25.0
    assert transfer["transferId"].startswith("test-transfer-")

    flow.confirm()
    assert flow.step == PaymentStep.SUBMITTING_FINAL_REQUEST

    record = flow.submit()
    assert flow.step == PaymentStep.DONE
    assert record["wiseTransferId"] == transfer["transferId"]
    assert record["paymentStatus"] == "pending"


def test_payment_flow_rejects_out_of_order_steps(samples):
    flow = SamplePaymentFlow(MockTransferProvider(), samples)
    with pytest.raises(FlowStateError):
        flow.confirm()
    with pytest.raises(FlowStateError):
        flow.submit()
    flow.request_instructions(sample_form())
    with pytest.raises(FlowStateError):
        flow.request_instructions(sample_form())


class UnpaidProvider(MockTransferProvider):
    def check_transfer(self, transfer_id):
        return {"transferId": transfer_id, "status": "incoming_payment_waiting"}


def test_unfunded_transfer_keeps_waiting(samples):
    flow = SamplePaymentFlow(UnpaidProvider(), samples)
    flow.request_instructions(sample_form())
    status = flow.confirm()
    assert status["status"] == "incoming_payment_waiting"
    assert flow.step == PaymentStep.AWAITING_PAYMENT_CONFIRMATION
    assert samples.list({}).total == 0


def test_resumed_flow_submits_funded_transfer(samples):
    submission = SampleRequestSubmission(**sample_data(wiseTransferId="48213377"))
    flow = SamplePaymentFlow.resume(MockTransferProvider(), samples, submission)
    assert flow.step == PaymentStep.AWAITING_PAYMENT_CONFIRMATION

    flow.confirm()
    record = flow.submit()
    assert record["wiseTransferId"] == "48213377"
    assert record["paymentStatus"] == "paid"


def test_unfunded_submission_is_not_saved(samples):
    submission = SampleRequestSubmission(**sample_data(wiseTransferId="48213377"))
    with pytest.raises(PaymentRequiredError, match="not been funded"):
        submit_sample_request(UnpaidProvider(), samples, submission)
    assert samples.list({}).total == 0

    assert submit_sample_request(MockTransferProvider(), samples, submission)["wiseTransferId"] == "48213377"


class FailingProvider(MockTransferProvider):
    def create_transfer(self, *args, **kwargs):
        raise PaymentProviderError("Failed to create transfer.")


def test_failed_instructions_return_to_form(samples):
    flow = SamplePaymentFlow(FailingProvider(), samples)
    with pytest.raises(PaymentProviderError):
        flow.request_instructions(sample_form())
    assert flow.step == PaymentStep.FORM_EDITING


def test_provider_must_implement_every_operation():
    class CreateOnly(TransferProvider):
        def create_transfer(self, country, currency="usd", **kwargs):
            return {}

    with pytest.raises(TypeError):
        CreateOnly()


def test_only_usd_is_supported():
    with pytest.raises(ValidationFailed):
        MockTransferProvider().create_transfer("Germany", "eur")


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.ok = status_code < 400
        self.payload = payload or {}
        self.text = str(self.payload)

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        for (expected_method, suffix), response in self.responses.items():
            if method == expected_method and url.endswith(suffix):
                if isinstance(response, Exception):
                    raise response
                return response
        raise AssertionError(f"unexpected request {method} {url}")


def wise(responses):
    session = FakeSession(responses)
    return WiseTransferProvider("live-token", "123", "https://api.example.test/", session=session), session


def test_wise_transfer_creation():
    provider, session = wise({
        ("POST", "/v3/quotes"): FakeResponse(payload={"id": "quote-1"}),
        ("POST", "/v1/accounts"): FakeResponse(400, {"error": "bad recipient"}),
        ("POST", "/v1/transfers"): FakeResponse(payload={"id": 987, "status": "incoming_payment_waiting"}),
        ("GET", "/v1/transfers/987/funding-instructions"): FakeResponse(payload={"iban": "DE00"}),
    })

    transfer = provider.create_transfer("Japan", "USD", email="a@b.example", company_name="Acme")

    assert transfer == {
        "transferId": "987",
        "quoteId": "quote-1",
        "amount": 30.0,
        "currency": "USD",
        "status": "incoming_payment_waiting",
        "paymentInstructions": {"iban": "DE00"},
        "recipientId": None,
    }
    method, url, kwargs = session.calls[0]
    assert url == "https://api.example.test/v3/quotes"
    assert kwargs["headers"]["Authorization"] == "Bearer live-token"
    assert kwargs["json"]["sourceAmount"] == 30.0
    assert kwargs["json"]["profile"] == 123


def test_wise_quote_failure():
    provider, _ = wise({("POST", "/v3/quotes"): FakeResponse(401, {"error": "unauthorized"})})
    with pytest.raises(PaymentProviderError):
        provider.create_transfer("Japan")


def test_wise_connection_failure():
    provider, _ = wise({("GET", "/v1/transfers/55"): requests.ConnectionError("down")})
    with pytest.raises(PaymentProviderError):
        provider.check_transfer("55")


def test_wise_check_transfer():
    provider, _ = wise({
        ("GET", "/v1/transfers/55"): FakeResponse(payload={"id": 55, "status": "funded", "currentState": "funded"}),
    })
    status = provider.check_transfer("55")
    assert status == {"transferId": "55", "status": "funded", "currentState": "funded"}
    assert provider.is_funded(status["status"])


def test_wise_check_test_transfer_skips_api():
    provider, session = wise({})
    assert provider.check_transfer("test-transfer-1")["status"] == "funded"
    assert session.calls == []


@pytest.mark.parametrize("token", [None, "test-abc"])
def test_provider_from_settings_falls_back_to_mock(token):
    assert isinstance(provider_from_settings(Settings(wise_api_token=token)), MockTransferProvider)


def test_provider_from_settings_needs_profile():
    with pytest.raises(PaymentProviderError):
        provider_from_settings(Settings(wise_api_token="live"))
    provider = provider_from_settings(Settings(wise_api_token="live", wise_profile_id="42"))
    assert isinstance(provider, WiseTransferProvider)


@pytest.mark.parametrize(
    "country, cents",
    [("United States", 2000), ("Germany", 2500), ("Japan", 3000), ("Nigeria", 4000), ("Other", 2800), ("Narnia", 2800)],
)
def test_shipping_fees(country, cents):
    assert shipping_fee_cents(country) == cents
    assert shipping_fee_dollars(country) == cents / 100
