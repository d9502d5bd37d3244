import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import ensure_indexes
from images import ImageStore
from leads import MessageService, QuoteService, SampleService
from mailer import MailError, Mailer
from main import create_app
from notifications import NotificationService
from payments import MockTransferProvider
from services import CustomManufacturingService, FinishedProductService, RawLeatherService


class FakeImageStore(ImageStore):
    """Records uploads and deletions instead of talking to Cloudinary."""

    def __init__(self):
        self.uploaded = []
        self.destroyed = []
        self.broken = set()

    def upload(self, data, folder, content_type=None):
        url = f"https://res.cloudinary.com/demo/image/upload/v1/{folder}/upload-{len(self.uploaded)}.jpg"
        self.uploaded.append(url)
        return url

    def destroy(self, public_id):
        if public_id in self.broken:
            raise RuntimeError("image host unavailable")
        self.destroyed.append(public_id)


class FakeMailer(Mailer):
    """Keeps sent emails in memory; set ``failing`` to make every send fail."""

    def __init__(self):
        self.sent = []
        self.failing = False

    def send(self, to, subject, text, html=None):
        if self.failing:
            raise MailError("mail service unavailable")
        self.sent.append((to, subject, text))


def product_data(**overrides):
    data = {
        "name": "Classic Bifold Wallet",
        "productType": "Wallets",
        "materialUsed": "Full grain cowhide",
        "dimensions": "11 x 9 cm",
        "moq": 50,
        "colorVariants": ["Black", "Tan"],
        "description": "Slim bifold wallet with six card slots.",
        "images": ["https://res.cloudinary.com/demo/image/upload/v1/finished-products/wallet-front.jpg"],
        "pricePerUnit": 12.5,
        "priceUnit": "per piece",
        "tags": ["wallet", "bifold"],
    }
    data.update(overrides)
    return data


def raw_leather_data(**overrides):
    data = {
        "name": "Crazy Horse Buffalo",
        "leatherType": "Buffalo Leather",
        "animal": "Buffalo",
        "finish": "Crazy Horse",
        "thickness": "1.8-2.0 mm",
        "size": "20-25 sq ft",
        "colors": ["Dark Brown", "Olive"],
        "minOrderQuantity": 500,
        "images": ["https://res.cloudinary.com/demo/image/upload/v1/raw-leather/buffalo.jpg"],
        "description": "Oily pull-up buffalo hide for bags and belts.",
        "pricePerSqFt": 2.4,
        "priceUnit": "per sq ft",
    }
    data.update(overrides)
    return data


def sample_data(**overrides):
    data = {
        "companyName": "Northwind Goods",
        "contactPerson": "Sam Lee",
        "email": "sam@northwind.example",
        "country": "Germany",
        "address": "Hauptstrasse 1, Berlin",
        "sampleType": "finished-products",
        "wiseTransferId": "test-transfer-1700000000000",
    }
    data.update(overrides)
    return data


def quote_data(**overrides):
    data = {
        "itemName": "Classic Bifold Wallet",
        "itemTypeCategory": "finished-product",
        "customerName": "Alex Kim",
        "customerEmail": "alex@buyer.example",
        "companyName": "Buyer Co",
        "destinationCountry": "Canada",
        "quantity": 200,
        "quantityUnit": "pieces",
    }
    data.update(overrides)
    return data


@pytest.fixture
def db():
    database = mongomock.MongoClient()["leather_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def images():
    return FakeImageStore()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def notifications(db):
    return NotificationService(db)


@pytest.fixture
def products(db, images):
    return FinishedProductService(db, images)


@pytest.fixture
def raw_leather(db, images):
    return RawLeatherService(db, images)


@pytest.fixture
def custom_requests(db, images, notifications):
    return CustomManufacturingService(db, images, notifications)


@pytest.fixture
def quotes(db, notifications, mailer):
    return QuoteService(db, notifications, mailer)


@pytest.fixture
def samples(db, notifications, mailer):
    return SampleService(db, notifications, mailer)


@pytest.fixture
def messages(db, notifications, mailer):
    return MessageService(db, notifications, mailer)


@pytest.fixture
def app(db, images, mailer):
    return create_app(settings=Settings(), db=db, image_store=images,
                      payment_provider=MockTransferProvider(), mailer=mailer)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
