"""
Bank transfer providers for the sample shipping fee

The sample request flow asks a provider for transfer instructions, lets the
customer pay, then checks the transfer status before the request is saved.
MockTransferProvider never moves money: it hands out test-transfer ids and a
fake bank account, and reports every transfer as funded.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

import requests

from config import Settings
from errors import PaymentProviderError, ValidationFailed
from shipping import SUPPORTED_CURRENCY, shipping_fee_dollars

logger = logging.getLogger(__name__)

TEST_TOKEN_PREFIX = "test-"
FUNDED_STATUSES = ("funded", "outgoing_payment_sent")
REQUEST_TIMEOUT = 15


def _check_currency(currency: str):
    if (currency or "").lower() != SUPPORTED_CURRENCY:
        raise ValidationFailed("Only USD currency is supported currently.")


class TransferProvider(ABC):
    @abstractmethod
    def create_transfer(self, country: str, currency: str = SUPPORTED_CURRENCY, email: Optional[str] = None,
                        contact_person: Optional[str] = None, company_name: Optional[str] = None,
                        metadata: Optional[dict] = None) -> dict:
        raise NotImplementedError

    @abstractmethod
    def check_transfer(self, transfer_id: str) -> dict:
        raise NotImplementedError

    @staticmethod
    def is_funded(status: Optional[str]) -> bool:
        return status in FUNDED_STATUSES


class MockTransferProvider(TransferProvider):
    def create_transfer(self, country, currency=SUPPORTED_CURRENCY, email=None, contact_person=None,
                        company_name=None, metadata=None):
        _check_currency(currency)
        stamp = int(time.time() * 1000)
        logger.info("Test mode transfer for %s", country)
        return {
            "transferId": f"test-transfer-{stamp}",
            "quoteId": f"test-quote-{stamp}",
            "amount": shipping_fee_dollars(country),
            "currency": currency,
            "status": "incoming_payment_waiting",
            "paymentInstructions": {
                "accountDetails": {
                    "accountNumber": "1234567890",
                    "routingNumber": "987654321",
                    "bankName": "Test Bank",
                    "swiftCode": "TESTUS33",
                    "iban": "US64TEST1234567890123456",
                    "reference": f"TEST-REF-{stamp}",
                },
            },
            "recipientId": f"test-recipient-{stamp}",
            "testMode": True,
        }

    def check_transfer(self, transfer_id):
        return {"transferId": transfer_id, "status": "funded", "currentState": "funded", "testMode": True}


class WiseTransferProvider(TransferProvider):
    def __init__(self, api_token: str, profile_id: str, base_url: str = "https://api.wise.com",
                 session: Optional[requests.Session] = None):
        self.api_token = api_token
        self.profile_id = profile_id
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_token}", "Content-Type": "application/json"}

    def _call(self, method: str, path: str, what: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return self.session.request(method, url, headers=self._headers(), timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as exc:
            logger.error("Wise API request to %s failed: %s", url, exc)
            raise PaymentProviderError(f"Failed to connect to the payment provider ({what}).")

    def _json_or_fail(self, response: requests.Response, what: str) -> dict:
        if not response.ok:
            logger.error("Wise %s error %s: %s", what, response.status_code, response.text)
            raise PaymentProviderError(f"Failed to {what}.")
        return response.json()

    def create_transfer(self, country, currency=SUPPORTED_CURRENCY, email=None, contact_person=None,
                        company_name=None, metadata=None):
        _check_currency(currency)
        amount = shipping_fee_dollars(country)
        profile = int(self.profile_id)

        quote = self._json_or_fail(
            self._call("POST", "/v3/quotes", "quote", json={
                "sourceCurrency": "USD",
                "targetCurrency": "USD",
                "sourceAmount": amount,
                "profile": profile,
            }),
            "create payment quote",
        )
        logger.info("Wise quote created: %s", quote.get("id"))

        # a missing recipient is not fatal; the customer still gets bank details
        recipient_id = None
        recipient = self._call("POST", "/v1/accounts", "recipient", json={
            "currency": "USD",
            "type": "email",
            "profile": profile,
            "accountHolderName": company_name or contact_person or "Sample Request Customer",
            "email": email,
            "legalType": "PRIVATE",
        })
        if recipient.ok:
            recipient_id = recipient.json().get("id")
        else:
            logger.warning("Failed to create Wise recipient: %s", recipient.text)

        product_id = (metadata or {}).get("productId") or "unknown"
        transfer = self._json_or_fail(
            self._call("POST", "/v1/transfers", "transfer", json={
                "targetAccount": recipient_id,
                "quoteUuid": quote.get("id"),
                "customerTransactionId": f"sample-request-{int(time.time() * 1000)}-{product_id}",
                "details": {
                    "reference": f"Sample Request Shipping - {company_name or 'Customer'}",
                    "transferPurpose": "verification.transfers.purpose.pay.bills",
                    "sourceOfFunds": "verification.source.of.funds.other",
                },
            }),
            "create transfer",
        )
        transfer_id = transfer.get("id")
        logger.info("Wise transfer %s created with status %s", transfer_id, transfer.get("status"))

        instructions = None
        if transfer_id:
            response = self._call("GET", f"/v1/transfers/{transfer_id}/funding-instructions", "instructions")
            if response.ok:
                instructions = response.json()
            else:
                logger.warning("Failed to fetch payment instructions for transfer %s", transfer_id)

        return {
            "transferId": str(transfer_id),
            "quoteId": quote.get("id"),
            "amount": amount,
            "currency": currency,
            "status": transfer.get("status"),
            "paymentInstructions": instructions,
            "recipientId": recipient_id,
        }

    def check_transfer(self, transfer_id):
        if transfer_id.startswith("test-transfer-"):
            return MockTransferProvider().check_transfer(transfer_id)
        data = self._json_or_fail(
            self._call("GET", f"/v1/transfers/{transfer_id}", "status"),
            "check transfer status",
        )
        logger.info("Wise transfer %s status: %s", transfer_id, data.get("status"))
        return {
            "transferId": str(data.get("id", transfer_id)),
            "status": data.get("status"),
            "currentState": data.get("currentState"),
        }


def provider_from_settings(settings: Settings) -> TransferProvider:
    token = settings.wise_api_token
    if not token or token.startswith(TEST_TOKEN_PREFIX):
        if not token:
            logger.warning("WISE_API_TOKEN is not configured; using the test transfer provider")
        return MockTransferProvider()
    if not settings.wise_profile_id:
        raise PaymentProviderError("Wise profile not configured")
    return WiseTransferProvider(token, settings.wise_profile_id, settings.wise_api_base_url)
