import logging
import re
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Tuple

from constants.label_constants import BULK_LABEL_CAP
from schemas.label_schemas import (
    LabelBuildResult,
    LabelIssue,
    LabelOptions,
    LabelRecord,
    ProductRecord,
    ProductUnitRecord,
    ResolvedFields,
)
from utils.errors import DataIntegrityError

logger = logging.getLogger(__name__)

# "(Blue)", "( Midnight Black )" ... colour lives in its own field, not in the name.
PARENTHESIZED = re.compile(r"\s*\([^)]*\)\s*")
WHITESPACE = re.compile(r"\s+")


def _first_present(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _clean_text(value: Optional[str]) -> str:
    if not value:
        return ""
    return WHITESPACE.sub(" ", PARENTHESIZED.sub(" ", value)).strip()


def display_name(product: ProductRecord) -> str:
    """
    "Brand Model" with parenthesised annotations removed.

    Raises DataIntegrityError when brand or model is missing.
    """
    brand = _clean_text(product.brand)
    model = _clean_text(product.model)
    missing = [name for name, value in (("brand", brand), ("model", model)) if not value]
    if missing:
        raise DataIntegrityError(
            f"Product {product.id} is missing {' and '.join(missing)}",
            product_id=product.id,
        )
    return f"{brand} {model}"


def resolve_label_fields(
    product: ProductRecord,
    unit: Optional[ProductUnitRecord] = None,
    use_master_barcode: bool = False,
) -> ResolvedFields:
    """
    Resolve the single price, barcode and spec set printed on one label.

    Price: unit.max_price, product.max_price, unit.price, product.price, 0.
    Barcode: the product barcode when `use_master_barcode` is set and one
    exists, else unit barcode, else product barcode. A missing barcode is a
    DataIntegrityError; barcodes are never made up here.
    """
    price = _first_present(
        unit.max_price if unit else None,
        product.max_price,
        unit.price if unit else None,
        product.price,
        Decimal("0"),
    )

    candidates = [unit.barcode if unit else None, product.barcode]
    if use_master_barcode:
        candidates.insert(0, product.barcode)
    # Blank strings count as missing.
    barcode = next((b for b in candidates if b and b.strip()), None)
    if barcode is None:
        serial = unit.serial_number if unit else None
        subject = f"Unit {serial}" if serial else f"Product {product.id}"
        raise DataIntegrityError(
            f"{subject} missing required barcode",
            product_id=product.id,
            serial_number=serial,
        )

    return ResolvedFields(
        price=Decimal(price),
        barcode=barcode,
        color=unit.color if unit and unit.color else None,
        storage=_first_present(unit.storage if unit else None, product.storage),
        ram=_first_present(unit.ram if unit else None, product.ram),
        battery_level=unit.battery_level if unit else None,
    )


def _record(product: ProductRecord, name: str, fields: ResolvedFields, unit: Optional[ProductUnitRecord]) -> LabelRecord:
    return LabelRecord(
        product_id=product.id,
        product_name=name,
        serial_number=unit.serial_number if unit else None,
        barcode=fields.barcode,
        price=fields.price,
        category=product.category_name,
        color=fields.color,
        storage=fields.storage,
        ram=fields.ram,
        battery_level=fields.battery_level,
    )


def bulk_label_count(stock: Optional[int], cap: int = BULK_LABEL_CAP) -> int:
    return min(max(stock or 0, 1), cap)


def _selected_units(
    product: ProductRecord,
    unit_serials: Optional[Mapping[str, Iterable[str]]],
) -> Tuple[List[ProductUnitRecord], bool]:
    """Unsold units to label, and whether a unit selection was applied."""
    eligible = [u for u in product.units if u.status != "sold"]
    if unit_serials is None or product.id not in unit_serials:
        return eligible, False
    wanted = set(unit_serials[product.id])
    return [u for u in eligible if u.serial_number in wanted], True


def build_label_records(
    products: Iterable[ProductRecord],
    options: LabelOptions,
    bulk_cap: int = BULK_LABEL_CAP,
    unit_serials: Optional[Mapping[str, Iterable[str]]] = None,
) -> LabelBuildResult:
    """
    Expand products into one LabelRecord per physical label, in input order.

    Products with unsold units get one record per unit; the rest get
    `min(max(stock, 1), bulk_cap)` product-level records. Products or units
    that cannot be labelled are skipped and reported in `issues`.

    `unit_serials` maps a product id to the serials chosen for printing.
    Products absent from it print all their unsold units. A product whose
    selection matches no unsold unit is skipped, never printed as bulk.
    """
    if bulk_cap < 1:
        raise ValueError("bulk_cap must be at least 1")

    result = LabelBuildResult()
    stats = result.stats

    for product in products:
        stats.total_products += 1
        try:
            name = display_name(product)
        except DataIntegrityError as e:
            logger.warning("Skipping product: %s", e)
            result.issues.append(LabelIssue(product_id=product.id, severity="warning", message=str(e)))
            continue

        units, selection_applied = _selected_units(product, unit_serials)

        if units:
            for unit in units:
                try:
                    fields = resolve_label_fields(product, unit, options.use_master_barcode)
                except DataIntegrityError as e:
                    logger.warning("Skipping unit: %s", e)
                    stats.units_missing_barcodes += 1
                    result.issues.append(LabelIssue(
                        product_id=product.id,
                        serial_number=unit.serial_number,
                        severity="error",
                        message=str(e),
                    ))
                    continue
                stats.units_with_barcodes += 1
                result.records.append(_record(product, name, fields, unit))
            continue

        if selection_applied and any(u.status != "sold" for u in product.units):
            logger.warning("Product %s: none of the selected units can be printed", product.id)
            result.issues.append(LabelIssue(
                product_id=product.id,
                severity="warning",
                message=f"Product {product.id}: no printable units selected",
            ))
            continue

        try:
            fields = resolve_label_fields(product, None, options.use_master_barcode)
        except DataIntegrityError as e:
            logger.warning("Skipping bulk product: %s", e)
            result.issues.append(LabelIssue(product_id=product.id, severity="error", message=str(e)))
            continue

        count = bulk_label_count(product.stock, bulk_cap)
        if product.stock and product.stock > count:
            logger.info("Bulk product %s: stock %s capped at %s labels", product.id, product.stock, count)
        stats.generic_labels += count
        result.records.extend(_record(product, name, fields, None) for _ in range(count))

    stats.total_labels = len(result.records)
    logger.info(
        "Built %s label records from %s products (%s warnings, %s errors)",
        stats.total_labels, stats.total_products, len(result.warnings), len(result.errors),
    )
    return result
