import re
from datetime import timedelta
from itertools import chain, repeat

import pytest

import leads
from conftest import product_data, quote_data, sample_data
from database import utcnow
from errors import AlreadyExistsError
from leads import generate_request_number, message_subject
from schemas import (
    ContactForm,
    FinishedProduct,
    FinishedProductUpdate,
    QuoteRequestForm,
    QuoteRequestUpdate,
    SampleRequestSubmission,
    SampleRequestUpdate,
)


def test_request_numbers_are_short_and_unique(db, monkeypatch):
    db["quoterequest"].insert_one({"requestNumber": "AAAAAAAA"})
    chars = chain(repeat("A", 8), repeat("B", 8))
    monkeypatch.setattr(leads.secrets, "choice", lambda alphabet: next(chars))
    assert generate_request_number(db["quoterequest"]) == "BBBBBBBB"


def test_request_number_alphabet(db):
    assert re.fullmatch(r"[0-9A-Z]{8}", generate_request_number(db["quoterequest"]))


def test_sample_request_keeps_product_name_from_submission_time(products, samples):
    product = products.create(FinishedProduct(**product_data()))
    sample = samples.create(SampleRequestSubmission(**sample_data(
        productId=product["id"], productTypeCategory="finished-product",
    )))
    assert sample["productName"] == "Classic Bifold Wallet"
    assert sample["productTypeCategory"] == "finished-product"

    products.update(product["id"], FinishedProductUpdate(name="Renamed Wallet"))

    assert samples.get_by_id(sample["id"])["productName"] == "Classic Bifold Wallet"


def test_sample_request_category_is_looked_up_when_missing(products, samples):
    product = products.create(FinishedProduct(**product_data()))
    sample = samples.create(SampleRequestSubmission(**sample_data(productId=product["id"])))
    assert sample["productTypeCategory"] == "finished-product"


def test_sample_request_with_unknown_product(samples):
    sample = samples.create(SampleRequestSubmission(**sample_data(
        productId="65a1b2c3d4e5f6a7b8c9d0e1", productTypeCategory="raw-leather",
    )))
    assert "productName" not in sample
    assert "productTypeCategory" not in sample


@pytest.mark.parametrize(
    "transfer_id, status",
    [("test-transfer-1700000000000", "pending"), ("48213377", "paid")],
)
def test_sample_payment_status_follows_transfer_id(samples, transfer_id, status):
    sample = samples.create(SampleRequestSubmission(**sample_data(wiseTransferId=transfer_id)))
    assert sample["paymentStatus"] == status
    assert sample["shippingFee"] == 25.0
    assert re.fullmatch(r"[0-9A-Z]{8}", sample["requestNumber"])


def test_transfer_can_only_be_used_once(samples):
    samples.create(SampleRequestSubmission(**sample_data(wiseTransferId="48213377")))
    with pytest.raises(AlreadyExistsError):
        samples.create(SampleRequestSubmission(**sample_data(wiseTransferId="48213377")))


def test_new_sample_request_notifies_admin(samples, db):
    sample = samples.create(SampleRequestSubmission(**sample_data()))
    notification = db["notification"].find_one({"type": "new_sample_request"})
    assert notification["relatedId"] == sample["id"]
    assert sample["requestNumber"] in notification["message"]
    assert notification["read"] is False


def test_shipped_at_follows_status(samples):
    sample = samples.create(SampleRequestSubmission(**sample_data()))

    shipped = samples.update(sample["id"], SampleRequestUpdate(
        status="shipped", shippingTrackingLink="https://track.example/123",
    ))
    assert shipped["paymentStatus"] == "shipped"
    assert shipped["shippedAt"]
    assert shipped["shippingTrackingLink"] == "https://track.example/123"

    delivered = samples.update(sample["id"], SampleRequestUpdate(status="delivered"))
    assert "shippedAt" not in delivered
    assert delivered["shippingTrackingLink"] == "https://track.example/123"


def test_sample_status_change_notification(samples, db):
    sample = samples.create(SampleRequestSubmission(**sample_data()))
    samples.update(sample["id"], SampleRequestUpdate(status="pending"))
    assert db["notification"].count_documents({"type": "sample_status_update"}) == 0
    samples.update(sample["id"], SampleRequestUpdate(status="processing"))
    assert db["notification"].count_documents({"type": "sample_status_update"}) == 1


def test_quote_request_lifecycle(quotes, db):
    quote = quotes.create(QuoteRequestForm(**quote_data(customerEmail="Alex@Buyer.Example")))
    assert quote["status"] == "requested"
    assert quote["customerEmail"] == "alex@buyer.example"
    assert db["notification"].count_documents({"type": "new_quote_request"}) == 1

    approved = quotes.update(quote["id"], QuoteRequestUpdate(status="approved", proposedPricePerUnit=11.0))
    assert approved["proposedPricePerUnit"] == 11.0
    assert "dispatchedAt" not in approved

    dispatched = quotes.update(quote["id"], QuoteRequestUpdate(status="dispatched", trackingNumber="1Z999"))
    assert dispatched["dispatchedAt"]
    assert db["notification"].count_documents({"type": "quote_status_update"}) == 2


def test_quote_search_by_request_number(quotes):
    quote = quotes.create(QuoteRequestForm(**quote_data()))
    quotes.create(QuoteRequestForm(**quote_data(itemName="Duffel Bag", companyName="Other Co")))
    result = quotes.list({"search": quote["requestNumber"]})
    assert [item["id"] for item in result.items] == [quote["id"]]
    assert quotes.list({"search": quote["id"]}).total == 1


@pytest.mark.parametrize(
    "inquiry, subject, priority",
    [
        ("complaint", "Customer Complaint", "high"),
        ("support", "Support Request", "high"),
        ("partnership", "Partnership Proposal", "medium"),
        ("general", "General Inquiry", "medium"),
    ],
)
def test_contact_message_subject_and_priority(messages, inquiry, subject, priority):
    message = messages.create(ContactForm(
        fullName="Jo Park",
        companyName="Park Leather",
        email="jo@park.example",
        country="Japan",
        inquiryType=inquiry,
        message="Do you ship samples to Osaka?",
    ))
    assert message["subject"] == subject
    assert message["priority"] == priority
    assert message["status"] == "unread"


def test_unknown_inquiry_subject():
    assert message_subject("something-else") == "New Message"


def test_message_list_filters(messages):
    for inquiry in ("complaint", "general", "general"):
        messages.create(ContactForm(
            fullName="Jo Park", companyName="Park Leather", email="jo@park.example",
            country="Japan", inquiryType=inquiry, message="A question about lead times.",
        ))
    assert messages.list({"priority": "high"}).total == 1
    assert messages.list({"category": "general"}).total == 2
    assert messages.list({"search": "customer complaint"}).total == 1


def test_notification_housekeeping(notifications, db):
    notifications.notify("First", "one")
    notifications.notify("Second", "two")
    old = notifications.notify("Old", "three")
    db["notification"].update_one(
        {"title": "Old"}, {"$set": {"createdAt": utcnow() - timedelta(days=45)}}
    )

    assert notifications.list({"read": "false"}).total == 3
    assert notifications.set_read(old["id"], True)["read"] is True
    assert notifications.mark_all_read() == 2
    assert notifications.list({"read": "false"}).total == 0

    assert notifications.delete_older_than(30) == 1
    assert notifications.list({}).total == 2


def test_quote_emails_follow_status_changes(quotes, mailer):
    quote = quotes.create(QuoteRequestForm(**quote_data()))
    to, subject, text = mailer.sent[0]
    assert to == "alex@buyer.example"
    assert subject == f"PureGrain: Your Quote Request (Ref: {quote['requestNumber']}) Received"
    assert "Dear Alex Kim" in text

    quotes.update(quote["id"], QuoteRequestUpdate(status="approved", proposedTotalPrice=2200))
    _, subject, text = mailer.sent[1]
    assert "Has Been Approved" in subject
    assert "Proposed Total Price: $2200.00 USD" in text

    quotes.update(quote["id"], QuoteRequestUpdate(adminComments="Ships in May"))
    assert len(mailer.sent) == 2


def test_paid_sample_request_is_confirmed_by_email(samples, mailer):
    samples.create(SampleRequestSubmission(**sample_data()))
    assert mailer.sent == []

    sample = samples.create(SampleRequestSubmission(**sample_data(wiseTransferId="48213377")))
    to, subject, _ = mailer.sent[0]
    assert to == "sam@northwind.example"
    assert subject == f"PureGrain: Your Sample Request Payment Confirmed & Order Placed (Ref: {sample['requestNumber']})!"


def test_sample_status_and_tracking_emails(samples, mailer):
    sample = samples.create(SampleRequestSubmission(**sample_data()))

    samples.update(sample["id"], SampleRequestUpdate(status="shipped"))
    _, subject, text = mailer.sent[-1]
    assert subject == f"PureGrain: Status Update for Your Sample Request (Ref: {sample['requestNumber']})"
    assert "from Pending to Shipped" in text

    samples.update(sample["id"], SampleRequestUpdate(status="shipped", shippingTrackingLink="https://track.example/9"))
    _, subject, text = mailer.sent[-1]
    assert "Has Been Shipped!" in subject
    assert "Tracking Link: https://track.example/9" in text
    assert len(mailer.sent) == 2


def contact_message(messages):
    return messages.create(ContactForm(
        fullName="Jo Park", companyName="Park Leather", email="jo@park.example",
        country="Japan", inquiryType="sample", message="Can you send swatches of the tan hide?",
    ))


def test_reply_is_stored_and_emailed(messages, mailer):
    message = contact_message(messages)

    replied = messages.set_status(message["id"], "replied", "Swatches are on their way.")
    assert replied["status"] == "replied"
    assert replied["replyText"] == "Swatches are on their way."
    assert replied["repliedAt"]
    assert mailer.sent == [("jo@park.example", "Re: Sample Request", "Swatches are on their way.")]


def test_status_change_without_reply_sends_nothing(messages, mailer):
    message = contact_message(messages)
    assert messages.set_status(message["id"], "read", "ignored")["status"] == "read"
    assert messages.set_status(message["id"], "replied")["status"] == "replied"
    assert mailer.sent == []


def test_mail_failure_does_not_undo_the_reply(messages, mailer):
    message = contact_message(messages)
    mailer.failing = True
    replied = messages.set_status(message["id"], "replied", "Swatches are on their way.")
    assert replied["status"] == "replied"
    assert messages.get_by_id(message["id"])["replyText"] == "Swatches are on their way."
    assert mailer.sent == []


def test_lead_services_need_an_admin_link(db, notifications):
    class Unlinked(leads.LeadService):
        collection_name = "quoterequest"

    with pytest.raises(TypeError):
        Unlinked(db, notifications)
