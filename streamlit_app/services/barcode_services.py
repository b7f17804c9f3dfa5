import asyncio
import base64
import logging
import re
from io import BytesIO
from typing import Callable, Optional

import barcode
from barcode.errors import BarcodeError
from barcode.writer import ImageWriter
from PIL import Image, ImageDraw, ImageFont

from constants.label_constants import (
    BARCODE_ERROR_TEXT,
    BARCODE_WRITER_OPTIONS,
    LABEL_TEMPLATES,
    MM_PER_INCH,
    TARGET_DPI,
)
from schemas.label_schemas import RenderedBarcode, Symbology
from utils.errors import RenderError

logger = logging.getLogger(__name__)

# ASCII digits only; str.isdigit() would also accept other scripts' digits.
EAN13_PATTERN = re.compile(r"[0-9]{13}")

RenderErrorCallback = Callable[[str, RenderError], None]


def resolve_symbology(value: str) -> Symbology:
    """
    The one place that decides how a barcode value is encoded.

    Exactly 13 ASCII digits -> EAN-13, anything else -> CODE128.
    """
    if value is not None and EAN13_PATTERN.fullmatch(value):
        return Symbology.EAN13
    return Symbology.CODE128


def mm_to_px(mm: float, dpi: int = TARGET_DPI) -> int:
    return int(round(mm / MM_PER_INCH * dpi))


def _encode(value: str, symbology: Symbology):
    if symbology is Symbology.EAN13:
        if not EAN13_PATTERN.fullmatch(value or ""):
            raise RenderError(f"EAN-13 needs exactly 13 digits, got {value!r}")
        # The library always computes the check digit itself, so hand it the
        # first 12 digits and refuse values whose own check digit disagrees.
        code = barcode.get_barcode_class("ean13")(value[:12], writer=ImageWriter())
        if code.get_fullcode() != value:
            raise RenderError(f"EAN-13 check digit mismatch for {value!r}")
        return code

    if not value:
        raise RenderError("Cannot encode an empty barcode value")
    if not value.isascii():
        raise RenderError(f"CODE128 only encodes ASCII, got {value!r}")
    return barcode.get_barcode_class("code128")(value, writer=ImageWriter())


def _to_data_uri(image: Image.Image) -> str:
    output = BytesIO()
    image.convert("RGB").save(output, format="PNG", dpi=(TARGET_DPI, TARGET_DPI))
    return "data:image/png;base64," + base64.b64encode(output.getvalue()).decode("ascii")


def render_error_placeholder(value: str, template_key: str = "standard") -> Image.Image:
    """A visibly broken barcode zone, so a failed render never prints blank."""
    template = LABEL_TEMPLATES[template_key]
    width = mm_to_px(template["width_mm"] - 2 * template["padding_mm"])
    height = mm_to_px(template["barcode_zone_mm"])

    image = Image.new("RGB", (width, height), (255, 235, 238))
    draw = ImageDraw.Draw(image)
    draw.rectangle([0, 0, width - 1, height - 1], outline=(244, 67, 54), width=3)

    font = ImageFont.load_default()
    for text, y, fill in (
        (BARCODE_ERROR_TEXT, height // 3, (211, 47, 47)),
        (value or "(empty)", (height * 2) // 3, (80, 80, 80)),
    ):
        left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
        draw.text(((width - (right - left)) // 2, y - (bottom - top) // 2), text, font=font, fill=fill)
    return image


def render_barcode(
    value: str,
    symbology: Optional[Symbology] = None,
    template_key: str = "standard",
    on_error: Optional[RenderErrorCallback] = None,
) -> RenderedBarcode:
    """
    Draw `value` as a PNG barcode sized for the template's barcode zone.

    Never raises for bad values: the result carries an error placeholder and
    `on_error` is called with the failure.
    """
    symbology = symbology or resolve_symbology(value)
    writer_options = dict(BARCODE_WRITER_OPTIONS)
    writer_options["module_height"] = LABEL_TEMPLATES[template_key]["bar_height_mm"]

    try:
        code = _encode(value, symbology)
        image = code.render(writer_options)
        return RenderedBarcode(value=value, symbology=symbology, data_uri=_to_data_uri(image))
    except (RenderError, BarcodeError, ValueError, KeyError, OSError) as e:
        error = e if isinstance(e, RenderError) else RenderError(f"Cannot render {symbology.value} barcode {value!r}: {e}")
        logger.error("Barcode render failed for %r (%s): %s", value, symbology.value, error)
        if on_error is not None:
            on_error(value, error)
        placeholder = render_error_placeholder(value, template_key)
        return RenderedBarcode(
            value=value,
            symbology=symbology,
            data_uri=_to_data_uri(placeholder),
            ok=False,
            error=str(error),
        )


async def render_barcode_async(
    value: str,
    symbology: Optional[Symbology] = None,
    template_key: str = "standard",
    on_error: Optional[RenderErrorCallback] = None,
) -> RenderedBarcode:
    # Yield once so every dispatched render gets scheduled before any of them runs.
    await asyncio.sleep(0)
    return render_barcode(value, symbology, template_key, on_error)
