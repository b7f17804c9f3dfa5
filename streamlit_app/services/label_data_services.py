import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from db.orm_session import get_session
from models.product_models import Product, ProductUnit
from schemas.label_schemas import ProductRecord, ProductUnitRecord
from utils.db_transaction import transactional
from utils.errors import TransientDataStoreError

logger = logging.getLogger(__name__)

ProductFetcher = Callable[[Sequence[str]], List[ProductRecord]]


def _unit_record(unit: ProductUnit) -> ProductUnitRecord:
    return ProductUnitRecord.model_validate(unit)


def _product_record(product: Product, units: List[ProductUnit]) -> ProductRecord:
    return ProductRecord(
        id=product.id,
        brand=product.brand,
        model=product.model,
        year=product.year,
        price=product.price,
        min_price=product.min_price,
        max_price=product.max_price,
        stock=product.stock,
        barcode=product.barcode,
        category_name=product.category.name if product.category else None,
        storage=product.storage,
        ram=product.ram,
        serial_numbers=[u.serial_number for u in units],
        units=[_unit_record(u) for u in units],
    )


@transactional
def get_label_products(db: Session, product_ids: Sequence[str]) -> List[ProductRecord]:
    """
    Products and their units for label printing, as plain records.

    Two queries for the whole selection. Products come back in the requested
    order; units in the order the store created them. Unknown ids are dropped.
    """
    ids = list(dict.fromkeys(product_ids))
    if not ids:
        return []

    products = db.scalars(
        select(Product)
        .options(selectinload(Product.category))
        .where(Product.id.in_(ids))
    ).all()

    units = db.scalars(
        select(ProductUnit)
        .where(ProductUnit.product_id.in_(ids))
        .order_by(ProductUnit.created_at, ProductUnit.id)
    ).all()

    units_by_product = {}
    for unit in units:
        units_by_product.setdefault(unit.product_id, []).append(unit)

    by_id = {p.id: p for p in products}
    missing = [i for i in ids if i not in by_id]
    if missing:
        logger.warning("Label fetch: %s product ids not found: %s", len(missing), missing)

    return [_product_record(by_id[i], units_by_product.get(i, [])) for i in ids if i in by_id]


def make_session_fetcher(factory: Optional[sessionmaker] = None) -> ProductFetcher:
    """Bind `get_label_products` to a fresh session per call."""
    def fetch(product_ids: Sequence[str]) -> List[ProductRecord]:
        with get_session(factory) as db:
            return get_label_products(db, product_ids)

    return fetch


async def fetch_with_retry(
    fetch: ProductFetcher,
    product_ids: Sequence[str],
    attempts: int = 3,
    backoff_seconds: float = 0.5,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> List[ProductRecord]:
    """
    Call `fetch` in a worker thread, retrying only transient data store failures.

    Waits `backoff_seconds * 2**n` between attempts and re-raises the last
    error after `attempts` tries. Every other exception propagates at once.
    Cancelling the caller abandons the read; the thread finishes unobserved.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.to_thread(fetch, product_ids)
        except TransientDataStoreError as e:
            if attempt == attempts:
                logger.error("Label fetch failed after %s attempts: %s", attempts, e)
                raise
            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.warning("Label fetch attempt %s/%s failed (%s), retrying in %.2fs", attempt, attempts, e, delay)
            await sleep(delay)


def get_product_choices(db: Session) -> list[dict]:
    """Product list for the label picker: id, display text, unsold unit count."""
    rows = db.execute(
        select(Product.id, Product.brand, Product.model, Product.stock, Product.barcode)
        .order_by(Product.brand, Product.model)
    ).all()
    unit_rows = db.execute(
        select(ProductUnit.product_id, ProductUnit.status)
    ).all()

    unsold = {}
    for product_id, status in unit_rows:
        if status != "sold":
            unsold[product_id] = unsold.get(product_id, 0) + 1

    return [
        {
            "id": r.id,
            "name": f"{r.brand} {r.model}",
            "stock": r.stock or 0,
            "barcode": r.barcode,
            "available_units": unsold.get(r.id, 0),
        }
        for r in rows
    ]


@transactional
def get_unit_choices(db: Session, product_id: str) -> list[dict]:
    """Unsold units of one product, oldest first, for per-unit label selection."""
    units = db.scalars(
        select(ProductUnit)
        .where(ProductUnit.product_id == product_id, ProductUnit.status != "sold")
        .order_by(ProductUnit.created_at, ProductUnit.id)
    ).all()
    return [
        {
            "serial_number": u.serial_number,
            "barcode": u.barcode,
            "color": u.color,
            "battery_level": u.battery_level,
        }
        for u in units
    ]
