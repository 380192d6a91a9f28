import mongomock
import pytest
from fastapi.testclient import TestClient

from accounts import AccountService
from catalog import CatalogService
from config import Settings
from database import ensure_indexes
from main import create_app
from notifications import ReceiptDispatcher
from orders import OrderService
from reviews import ReviewService

ADMIN_EMAIL = "admin@learnsphere.com"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        jwt_secret="test-secret",
        admin_email=ADMIN_EMAIL,
        receipts_dir=str(tmp_path / "receipts"),
    )


@pytest.fixture
def db():
    database = mongomock.MongoClient()["course_store_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def catalog(db):
    return CatalogService(db)


@pytest.fixture
def seeded_catalog(catalog):
    catalog.seed_courses()
    return catalog


@pytest.fixture
def orders(db, catalog):
    return OrderService(db, catalog)


@pytest.fixture
def reviews(db):
    return ReviewService(db)


@pytest.fixture
def accounts(db, settings):
    return AccountService(db, settings)


@pytest.fixture
def dispatcher(settings):
    return ReceiptDispatcher(settings)


@pytest.fixture
def client(settings, db):
    app = create_app(settings=settings, db=db)
    with TestClient(app) as c:
        yield c