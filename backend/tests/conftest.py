"""
Pytest fixtures for Phone Stock backend tests.

Provides the test app (in-memory SQLite), per-test table truncation, users
for each role, a catalog product and an invoice factory.
"""

from datetime import date, datetime

import pytest

from phonestock import create_app
from phonestock.config import TestConfig
from phonestock.extensions import db
from phonestock.services import auth_service, catalog_service, invoice_service
from phonestock.services.auth_service import Principal


# Business day used across the suite. 02:00 UTC is 07:30 in Asia/Colombo.
TODAY = date(2026, 10, 18)
NOW = datetime(2026, 10, 18, 2, 0)

IMEI_1 = "123456789012345"
IMEI_2 = "123456789012346"
IMEI_3 = "123456789012347"


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app(TestConfig, UPLOAD_FOLDER=str(tmp_path_factory.mktemp("uploads")))

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


@pytest.fixture(scope='function')
def owner(db_session):
    return auth_service.create_user(username="owner", email="owner@shop.lk", role="owner", first_name="Nimal")


@pytest.fixture(scope='function')
def clerk(db_session):
    return auth_service.create_user(username="clerk", email="clerk@shop.lk", role="clerk")


@pytest.fixture(scope='function')
def dsr(db_session):
    return auth_service.create_user(
        username="agent_a",
        email="agent_a@shop.lk",
        role="dsr",
        first_name="Kasun",
        last_name="Perera",
        phone="+94771234567",
    )


@pytest.fixture(scope='function')
def other_dsr(db_session):
    return auth_service.create_user(username="agent_b", email="agent_b@shop.lk", role="dsr")


@pytest.fixture(scope='function')
def owner_principal(owner):
    return Principal(user_id=owner.id, role=owner.role)


@pytest.fixture(scope='function')
def dsr_principal(dsr):
    return Principal(user_id=dsr.id, role=dsr.role)


@pytest.fixture(scope='function')
def product(db_session, owner):
    return catalog_service.create_product(
        payload={
            "brand": "samsung",
            "model": "Galaxy A55",
            "storage": "256GB",
            "ram": "8GB",
            "color": "Navy",
            "cost_price_cents": 10000,
            "selling_price_cents": 12000,
            "warranty_months": 12,
        },
        created_by_user_id=owner.id,
    )


@pytest.fixture(scope='function')
def make_invoice(db_session, owner, product):
    """Factory: Draft invoice with one unit per IMEI (cost 100.00, sell 120.00)."""
    def _make(number="INV-001", imeis=(IMEI_1,), cost=10000, sell=12000, **header):
        data = {
            "invoice_number": number,
            "invoice_date": TODAY.isoformat(),
            "supplier_name": "Colombo Mobile Distributors",
            "units": [
                {
                    "imei": imei,
                    "product_id": product.id,
                    "cost_price_cents": cost,
                    "selling_price_cents": sell,
                }
                for imei in imeis
            ],
        }
        data.update(header)
        return invoice_service.create_invoice(data=data, created_by_user_id=owner.id)

    return _make


@pytest.fixture(scope='function')
def verified_invoice(make_invoice, owner):
    def _make(number="INV-001", imeis=(IMEI_1,), **kwargs):
        invoice = make_invoice(number=number, imeis=imeis, **kwargs)
        invoice_service.attach_proof(
            invoice.id,
            proof_key=f"invoices/{number}/proof.jpg",
            proof_url=f"/uploads/invoices/{number}/proof.jpg",
            updated_by_user_id=owner.id,
        )
        return invoice_service.verify_invoice(invoice.id, verified_by_user_id=owner.id)

    return _make


def auth_headers(user) -> dict:
    """Gateway identity headers for a user."""
    return {"X-User-Id": str(user.id), "X-User-Role": user.role}
