# Thermal label printers in the shops run at 203 DPI (8 dots per mm).
TARGET_DPI = 203
MM_PER_INCH = 25.4

MIN_COPIES = 1
MAX_COPIES = 50

# Bulk products (no serialized units) print one label per stock item, capped
# at this many per product. Overridable through LABEL_BULK_CAP.
BULK_LABEL_CAP = 10

PRODUCT_NAME_MAX_LENGTH = 50
CURRENCY_SYMBOL = "€"
SPEC_SEPARATOR = " • "

BATTERY_BANDS = [
    (80, "high"),
    (50, "medium"),
    (0, "low"),
]

# Physical label templates. All sizes in millimetres.
LABEL_TEMPLATES = {
    "standard": {
        "name": "Standard 6 × 5 cm",
        "width_mm": 60.0,
        "height_mm": 50.0,
        "padding_mm": 2.0,
        "barcode_zone_mm": 18.0,
        "bar_height_mm": 11.0,
        "font_sizes": {
            "company": 7,
            "product_name": 11,
            "details": 7,
            "price": 14,
        },
    },
    "compact": {
        "name": "Compact 6 × 3 cm",
        "width_mm": 60.0,
        "height_mm": 30.0,
        "padding_mm": 1.5,
        "barcode_zone_mm": 11.0,
        "bar_height_mm": 6.0,
        "font_sizes": {
            "company": 6,
            "product_name": 9,
            "details": 6,
            "price": 11,
        },
    },
}

# Fixed barcode drawing parameters (python-barcode writer options, mm / pt).
BARCODE_WRITER_OPTIONS = {
    "module_width": 0.25,   # 2 printer dots
    "quiet_zone": 2.0,      # 16 printer dots each side
    "font_size": 7,
    "text_distance": 2.0,
    "background": "white",
    "foreground": "black",
    "write_text": True,
    "center_text": True,
    "dpi": TARGET_DPI,
}

BARCODE_ERROR_TEXT = "BARCODE ERROR"
