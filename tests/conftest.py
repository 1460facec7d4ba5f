"""Pytest fixtures for the e-invoice lifecycle tests."""

from __future__ import annotations

import copy
from collections.abc import AsyncGenerator
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.app import app
from src.database.session import get_db

_PARTY = {
    "endpoint_id": "KHUID00001234",
    "party_name": "Mekong Trading Co., Ltd.",
    "postal_address": {
        "street_name": "Street 271",
        "city_name": "Phnom Penh",
        "postal_zone": "12000",
        "country_code": "KH",
    },
    "party_tax_scheme": {"company_id": "K001-901234567", "tax_scheme": {"id": "VAT"}},
    "party_legal_entity": {
        "registration_name": "Mekong Trading Co., Ltd.",
        "company_id": "MOC-00012345",
    },
}

_VAT_10 = {"id": "S", "percent": Decimal("10"), "tax_scheme": {"id": "VAT"}}

_BASE_PAYLOAD = {
    "id": "INV-2026-0001",
    "issue_date": "2026-03-01",
    "currency_code": "USD",
    "supplier": _PARTY,
    "customer": {
        **_PARTY,
        "endpoint_id": "KHUID00009876",
        "party_name": "Angkor Retail Plc",
        "party_legal_entity": {"registration_name": "Angkor Retail Plc", "company_id": "MOC-00098765"},
        "contact": {"telephone": "+855 12 345 678", "electronic_mail": "ap@angkor-retail.example"},
    },
    "tax_total": {
        "tax_amount": Decimal("20.00"),
        "tax_subtotals": [
            {"taxable_amount": Decimal("200.00"), "tax_amount": Decimal("20.00"), "tax_category": _VAT_10},
        ],
    },
    "monetary_total": {
        "line_extension_amount": Decimal("200.00"),
        "tax_exclusive_amount": Decimal("200.00"),
        "tax_inclusive_amount": Decimal("220.00"),
        "payable_amount": Decimal("220.00"),
    },
    "lines": [
        {
            "id": "1",
            "quantity": Decimal("2"),
            "unit_code": "EA",
            "line_extension_amount": Decimal("200.00"),
            "tax_total": {
                "tax_amount": Decimal("20.00"),
                "tax_subtotals": [
                    {"taxable_amount": Decimal("200.00"), "tax_amount": Decimal("20.00"), "tax_category": _VAT_10},
                ],
            },
            "item": {"name": "Rice, 50kg bag", "description": "Jasmine rice"},
            "price_amount": Decimal("100.00"),
        },
    ],
}


@pytest.fixture
def payload_data():
    """Factory for a valid raw payload dict of the given kind; ``overrides`` replace top-level keys."""

    def _make(kind: str = "INVOICE", **overrides):
        data = copy.deepcopy(_BASE_PAYLOAD)
        data["kind"] = kind
        if kind == "INVOICE":
            data["type_code"] = "388"
            data["due_date"] = "2026-03-31"
        else:
            data["id"] = "CN-2026-0001" if kind == "CREDIT_NOTE" else "DN-2026-0001"
            data["type_code"] = "381" if kind == "CREDIT_NOTE" else "383"
            data["note"] = "Returned goods"
            data["billing_reference"] = {"invoice_id": "INV-2026-0001", "invoice_uuid": "auth-uuid-0001"}
        data.update(overrides)
        return data

    return _make


class FakeSavepoint:
    """Stands in for ``AsyncSession.begin_nested()``; records how the block ended."""

    def __init__(self) -> None:
        self.committed = False
        self.rolled_back = False

    async def __aenter__(self) -> FakeSavepoint:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self.committed = True
        else:
            self.rolled_back = True
        return False


@pytest.fixture
def mock_db():
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.savepoints = []

    def _begin_nested():
        savepoint = FakeSavepoint()
        session.savepoints.append(savepoint)
        return savepoint

    session.begin_nested = MagicMock(side_effect=_begin_nested)
    return session


@pytest_asyncio.fixture
async def async_client(mock_db) -> AsyncGenerator[AsyncClient, None]:
    """Yield an httpx AsyncClient wired to the FastAPI app with a mocked DB session."""

    async def override_get_db() -> AsyncGenerator[AsyncMock, None]:
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
