from decimal import Decimal
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Literal, Optional


class Symbology(str, Enum):
    EAN13 = "EAN13"
    CODE128 = "CODE128"


class PrintJobState(str, Enum):
    IDLE = "Idle"
    VALIDATING = "Validating"
    BUILDING_RECORDS = "BuildingRecords"
    RENDERING = "Rendering"
    AWAITING_RENDER_COMPLETION = "AwaitingRenderCompletion"
    PRINTING = "Printing"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


UnitStatus = Literal["available", "sold", "damaged"]
LabelFormat = Literal["standard", "compact"]


class ProductUnitRecord(BaseModel):
    serial_number: str
    price: Optional[Decimal] = Field(default=None, ge=0)
    min_price: Optional[Decimal] = Field(default=None, ge=0)
    max_price: Optional[Decimal] = Field(default=None, ge=0)
    color: Optional[str] = None
    storage: Optional[int] = None
    ram: Optional[int] = None
    battery_level: Optional[int] = Field(default=None, ge=0, le=100)
    barcode: Optional[str] = None
    status: UnitStatus = "available"

    model_config = ConfigDict(from_attributes=True)


class ProductRecord(BaseModel):
    id: str
    # Optional here so the record builder can report a missing name instead of
    # the whole fetch failing on one bad row.
    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    min_price: Optional[Decimal] = Field(default=None, ge=0)
    max_price: Optional[Decimal] = Field(default=None, ge=0)
    stock: Optional[int] = None
    barcode: Optional[str] = None
    category_name: Optional[str] = None
    storage: Optional[int] = None
    ram: Optional[int] = None
    serial_numbers: List[str] = Field(default_factory=list)
    units: List[ProductUnitRecord] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class LabelOptions(BaseModel):
    copies: int = Field(default=1, ge=1, le=50)
    include_price: bool = True
    include_barcode: bool = True
    include_company: bool = False
    include_category: bool = False
    include_serial: bool = True
    format: LabelFormat = "standard"
    use_master_barcode: bool = False
    company_name: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class ResolvedFields(BaseModel):
    price: Decimal
    barcode: str
    color: Optional[str] = None
    storage: Optional[int] = None
    ram: Optional[int] = None
    battery_level: Optional[int] = None


class LabelRecord(BaseModel):
    product_id: str
    product_name: str
    serial_number: Optional[str] = None
    barcode: str = Field(min_length=1)
    price: Decimal = Field(ge=0)
    category: Optional[str] = None
    color: Optional[str] = None
    storage: Optional[int] = None
    ram: Optional[int] = None
    battery_level: Optional[int] = Field(default=None, ge=0, le=100)

    @field_validator("barcode")
    @classmethod
    def barcode_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("barcode must not be blank")
        return value


class FormattedLabel(BaseModel):
    product_name: str
    company_name: Optional[str] = None
    serial_text: Optional[str] = None
    category: Optional[str] = None
    price_text: Optional[str] = None
    spec_line: Optional[str] = None
    color_text: Optional[str] = None
    battery_band: Optional[str] = None
    barcode: Optional[str] = None
    format: LabelFormat = "standard"

    model_config = ConfigDict(frozen=True)


class LabelIssue(BaseModel):
    product_id: Optional[str] = None
    serial_number: Optional[str] = None
    severity: Literal["warning", "error"]
    message: str


class LabelStats(BaseModel):
    total_products: int = 0
    total_labels: int = 0
    units_with_barcodes: int = 0
    units_missing_barcodes: int = 0
    generic_labels: int = 0


class LabelBuildResult(BaseModel):
    records: List[LabelRecord] = Field(default_factory=list)
    issues: List[LabelIssue] = Field(default_factory=list)
    stats: LabelStats = Field(default_factory=LabelStats)

    @property
    def warnings(self) -> List[LabelIssue]:
        return [i for i in self.issues if i.severity == "warning"]

    @property
    def errors(self) -> List[LabelIssue]:
        return [i for i in self.issues if i.severity == "error"]


class RenderedBarcode(BaseModel):
    value: str
    symbology: Symbology
    data_uri: str
    ok: bool = True
    error: Optional[str] = None


class PrintableDocument(BaseModel):
    html: str
    format: LabelFormat
    width_mm: float
    height_mm: float
    record_count: int
    label_count: int
    render_errors: List[str] = Field(default_factory=list)


class PrintJobResult(BaseModel):
    success: bool
    message: str
    total_labels: int = 0
    state: PrintJobState
    issues: List[LabelIssue] = Field(default_factory=list)
    render_errors: List[str] = Field(default_factory=list)
    stats: Optional[LabelStats] = None
