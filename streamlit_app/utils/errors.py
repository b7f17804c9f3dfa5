class LabelPipelineError(Exception):
    """Base class for everything the label pipeline raises on purpose."""


class LabelValidationError(LabelPipelineError):
    """Bad options or an empty record set. Raised before any side effect."""


class DataIntegrityError(LabelPipelineError):
    """A product or unit cannot become a label (missing barcode, brand or model)."""

    def __init__(self, message: str, product_id: str | None = None, serial_number: str | None = None):
        super().__init__(message)
        self.product_id = product_id
        self.serial_number = serial_number


class RenderError(LabelPipelineError):
    """A barcode value could not be encoded or drawn."""


class HostError(LabelPipelineError):
    """The print target is unavailable. Fatal for the current print job."""

    def __init__(self, message: str, hint: str = "Allow popups for this site and try again."):
        super().__init__(message)
        self.hint = hint

    def __str__(self) -> str:
        return f"{self.args[0]} ({self.hint})"


class DataStoreError(RuntimeError):
    """A data store read failed."""


class TransientDataStoreError(DataStoreError):
    """A data store read failed for a reason worth retrying (network, timeout)."""


class PrintCancelled(LabelPipelineError):
    """The print dialog was closed while its job was still running."""


class ConfigurationError(ValueError):
    """An environment setting is missing or out of range."""
