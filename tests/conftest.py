from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.base import Base
from models.product_models import Category, Product, ProductUnit
from schemas.label_schemas import LabelOptions, LabelRecord, ProductRecord, ProductUnitRecord

# A valid EAN-13 (check digit 1) and a second one (check digit 6).
EAN_A = "4006381333931"
EAN_B = "1111111111116"


@pytest.fixture
def make_unit():
    def _make(serial="S1", **overrides):
        data = {"serial_number": serial, "barcode": f"UNIT-{serial}", "status": "available"}
        data.update(overrides)
        return ProductUnitRecord(**data)
    return _make


@pytest.fixture
def make_product():
    def _make(product_id="p-1", units=None, **overrides):
        data = {
            "id": product_id,
            "brand": "Apple",
            "model": "iPhone 14",
            "price": Decimal("30"),
            "barcode": f"PROD-{product_id}",
            "units": units or [],
        }
        data.update(overrides)
        data["serial_numbers"] = data.get("serial_numbers") or [u.serial_number for u in data["units"]]
        return ProductRecord(**data)
    return _make


@pytest.fixture
def label_record():
    return LabelRecord(
        product_id="p-1",
        product_name="Apple iPhone 14",
        serial_number="SN123",
        barcode=EAN_A,
        price=Decimal("849.5"),
        category="Smartphones",
        color="midnight black",
        storage=128,
        ram=6,
        battery_level=87,
    )


@pytest.fixture
def options():
    return LabelOptions(copies=1, include_company=True, include_category=True, company_name="Phone Corner")


@pytest.fixture
def session_factory():
    """In-memory SQLite store with two products, one of them serialized."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, future=True, expire_on_commit=False)

    start = datetime(2024, 1, 1, 9, 0, 0)
    with factory() as db:
        phones = Category(id=1, name="Smartphones")
        db.add(phones)
        db.add(Product(
            id="p-phone", brand="Apple (Blue)", model="iPhone 13", price=Decimal("500"),
            max_price=Decimal("550"), stock=2, barcode="PHONE-MASTER", category=phones,
            storage=128, ram=4,
        ))
        db.add(Product(
            id="p-case", brand="Spigen", model="Tough Armor", price=Decimal("19.99"),
            stock=25, barcode=EAN_A,
        ))
        db.add_all([
            ProductUnit(id="u-2", product_id="p-phone", serial_number="SER-B", barcode="BC-B",
                        status="available", created_at=start + timedelta(minutes=5)),
            ProductUnit(id="u-1", product_id="p-phone", serial_number="SER-A", barcode="BC-A",
                        price=Decimal("520"), color="Blue", battery_level=91,
                        status="available", created_at=start),
            ProductUnit(id="u-3", product_id="p-phone", serial_number="SER-C", barcode="BC-C",
                        status="sold", created_at=start + timedelta(minutes=10)),
        ])
        db.commit()

    yield factory
    engine.dispose()
