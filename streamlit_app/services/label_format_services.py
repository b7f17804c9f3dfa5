"""
Turns label records into the exact strings printed on a sticker.

Preview and print both go through `format_label`, so what the user sees on
screen is what comes out of the printer. Everything here is a pure function
of (record, options): no clock, no randomness, no I/O.
"""
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from constants.label_constants import (
    BATTERY_BANDS,
    CURRENCY_SYMBOL,
    PRODUCT_NAME_MAX_LENGTH,
    SPEC_SEPARATOR,
)
from schemas.label_schemas import FormattedLabel, LabelOptions, LabelRecord

WHITESPACE = re.compile(r"\s+")
CENTS = Decimal("0.01")


def format_product_name(name: str, max_length: int = PRODUCT_NAME_MAX_LENGTH) -> str:
    return WHITESPACE.sub(" ", name).strip().upper()[:max_length].rstrip()


def format_price(price: Decimal) -> str:
    return f"{CURRENCY_SYMBOL}{Decimal(price).quantize(CENTS, rounding=ROUND_HALF_UP)}"


def format_spec_line(storage: Optional[int], ram: Optional[int], battery_level: Optional[int]) -> Optional[str]:
    parts = []
    if storage is not None:
        parts.append(f"{storage}gb")
    if ram is not None:
        parts.append(f"{ram}gb ram")
    if battery_level is not None:
        parts.append(f"{battery_level}%")
    return SPEC_SEPARATOR.join(parts) or None


def battery_band(battery_level: Optional[int]) -> Optional[str]:
    if battery_level is None:
        return None
    for threshold, band in BATTERY_BANDS:
        if battery_level >= threshold:
            return band
    return BATTERY_BANDS[-1][1]


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = WHITESPACE.sub(" ", value).strip()
    return value or None


def format_label(record: LabelRecord, options: LabelOptions) -> FormattedLabel:
    company = _clean(options.company_name) if options.include_company else None
    serial = _clean(record.serial_number)
    color = _clean(record.color)

    return FormattedLabel(
        product_name=format_product_name(record.product_name),
        company_name=company.upper() if company else None,
        serial_text=f"SN: {serial}" if serial and options.include_serial else None,
        category=_clean(record.category) if options.include_category else None,
        price_text=format_price(record.price) if options.include_price else None,
        spec_line=format_spec_line(record.storage, record.ram, record.battery_level),
        color_text=color.title() if color else None,
        battery_band=battery_band(record.battery_level),
        barcode=record.barcode if options.include_barcode and record.barcode else None,
        format=options.format,
    )


def format_labels(records: Iterable[LabelRecord], options: LabelOptions) -> List[FormattedLabel]:
    """Preview output: one formatted label per record, before copy expansion."""
    return [format_label(record, options) for record in records]
