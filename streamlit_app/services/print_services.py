import asyncio
import logging
import os
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from jinja2 import Environment, FileSystemLoader
from pydantic import ValidationError

from constants.label_constants import BULK_LABEL_CAP, LABEL_TEMPLATES
from schemas.label_schemas import (
    FormattedLabel,
    LabelOptions,
    LabelRecord,
    PrintableDocument,
    PrintJobResult,
    PrintJobState,
    RenderedBarcode,
)
from services.barcode_services import RenderErrorCallback, render_barcode_async
from services.label_data_services import ProductFetcher, fetch_with_retry
from services.label_format_services import format_label
from services.label_services import build_label_records
from services.print_host import PrintHost
from utils.errors import DataStoreError, LabelPipelineError, LabelValidationError, PrintCancelled, RenderError
from utils.event_channel import PrintSession

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")
DOCUMENT_TEMPLATE = "label_document.html.j2"

_environment = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=True,
    trim_blocks=True,
    lstrip_blocks=True,
)

OptionsInput = Union[LabelOptions, Mapping[str, Any]]

JOB_STATE_TOPIC = "print_job_state"
JOB_RESULT_TOPIC = "print_job_result"


# --- Validation ---

def validate_options(options: OptionsInput) -> LabelOptions:
    """Re-check options on every entry point; raises LabelValidationError."""
    data = options.model_dump() if isinstance(options, LabelOptions) else dict(options)
    try:
        return LabelOptions.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise LabelValidationError(f"Invalid label options: {problems}") from e


def validate_records(records: Iterable[Union[LabelRecord, Mapping[str, Any]]]) -> List[LabelRecord]:
    try:
        validated = [r if isinstance(r, LabelRecord) else LabelRecord.model_validate(r) for r in records]
    except ValidationError as e:
        raise LabelValidationError(f"Invalid label record: {e.errors()[0]['msg']}") from e
    if not validated:
        raise LabelValidationError("No labels to print")
    return validated


def preview_labels(records: Iterable[LabelRecord], options: OptionsInput) -> List[FormattedLabel]:
    """Formatted labels for on-screen preview, identical to what gets printed."""
    label_options = validate_options(options)
    return [format_label(r, label_options) for r in validate_records(records)]


# --- Document assembly ---

def _expand_copies(
    labels: Sequence[FormattedLabel],
    barcodes: Sequence[Optional[RenderedBarcode]],
    copies: int,
) -> List[Dict[str, Any]]:
    # All copies of one record stay together: A1 A1 A2 A2 ..., never A1 A2 A1 A2.
    return [
        {"record_index": index, "copy_number": copy + 1, "label": label, "barcode": barcodes[index]}
        for index, label in enumerate(labels)
        for copy in range(copies)
    ]


async def assemble_document(
    records: Iterable[Union[LabelRecord, Mapping[str, Any]]],
    options: OptionsInput,
    on_render_error: Optional[RenderErrorCallback] = None,
    session: Optional[PrintSession] = None,
    on_renders_dispatched: Optional[Callable[[int], None]] = None,
) -> PrintableDocument:
    """
    Lay out `copies` blocks per record at the template's physical size.

    Options and records are validated before any rendering. One barcode
    render is dispatched per record and all of them are awaited before the
    document is returned, so a returned document never has pending barcodes.
    """
    label_options = validate_options(options)
    label_records = validate_records(records)
    template = LABEL_TEMPLATES[label_options.format]

    labels = [format_label(r, label_options) for r in label_records]
    render_errors: List[str] = []

    def _collect(value: str, error: RenderError):
        render_errors.append(str(error))
        if on_render_error is not None:
            on_render_error(value, error)

    tasks: List[Optional[asyncio.Task]] = []
    for label in labels:
        if not label.barcode:
            tasks.append(None)
            continue
        task = asyncio.ensure_future(
            render_barcode_async(label.barcode, template_key=label_options.format, on_error=_collect)
        )
        if session is not None:
            session.track(task)
        tasks.append(task)

    dispatched = [t for t in tasks if t is not None]
    if on_renders_dispatched is not None:
        on_renders_dispatched(len(dispatched))

    rendered = iter(await asyncio.gather(*dispatched))
    barcodes = [next(rendered) if t is not None else None for t in tasks]

    blocks = _expand_copies(labels, barcodes, label_options.copies)
    html = _environment.get_template(DOCUMENT_TEMPLATE).render(template=template, blocks=blocks)

    logger.info(
        "Assembled %s labels (%s records x %s copies, %s render errors)",
        len(blocks), len(labels), label_options.copies, len(render_errors),
    )
    return PrintableDocument(
        html=html,
        format=label_options.format,
        width_mm=template["width_mm"],
        height_mm=template["height_mm"],
        record_count=len(labels),
        label_count=len(blocks),
        render_errors=render_errors,
    )


def assemble_document_sync(records, options, on_render_error=None) -> PrintableDocument:
    """For callers without an event loop (the Streamlit script thread)."""
    return asyncio.run(assemble_document(records, options, on_render_error))


# --- Print job ---

class PrintJob:
    """
    State of one print invocation.

    Idle -> Validating -> BuildingRecords -> Rendering -> AwaitingRenderCompletion
    -> Printing -> Succeeded. Failed is reachable from every non-terminal state.
    """

    TRANSITIONS = {
        PrintJobState.IDLE: {PrintJobState.VALIDATING},
        PrintJobState.VALIDATING: {PrintJobState.BUILDING_RECORDS},
        PrintJobState.BUILDING_RECORDS: {PrintJobState.RENDERING},
        PrintJobState.RENDERING: {PrintJobState.AWAITING_RENDER_COMPLETION},
        PrintJobState.AWAITING_RENDER_COMPLETION: {PrintJobState.PRINTING},
        PrintJobState.PRINTING: {PrintJobState.SUCCEEDED},
    }
    TERMINAL = {PrintJobState.SUCCEEDED, PrintJobState.FAILED}

    def __init__(self, on_change: Optional[Callable[[PrintJobState], None]] = None):
        self.state = PrintJobState.IDLE
        self.history = [PrintJobState.IDLE]
        self.reason: Optional[str] = None
        self.total_labels = 0
        self._on_change = on_change

    @property
    def finished(self) -> bool:
        return self.state in self.TERMINAL

    def _move(self, state: PrintJobState):
        self.state = state
        self.history.append(state)
        logger.info("Print job -> %s", state.value)
        if self._on_change is not None:
            self._on_change(state)

    def advance(self, state: PrintJobState):
        if state not in self.TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Illegal print job transition {self.state.value} -> {state.value}")
        self._move(state)

    def succeed(self, total_labels: int):
        self.advance(PrintJobState.SUCCEEDED)
        self.total_labels = total_labels

    def fail(self, reason: str):
        if self.finished:
            raise RuntimeError(f"Print job already finished as {self.state.value}")
        self.reason = reason
        self._move(PrintJobState.FAILED)


def _ensure_active(session: Optional[PrintSession]):
    if session is not None and not session.active:
        raise PrintCancelled(f"Print dialog {session.dialog_id} was closed")


async def _fetch_products(
    fetch_products: ProductFetcher,
    product_ids: Sequence[str],
    session: Optional[PrintSession],
    **retry,
):
    task = asyncio.ensure_future(fetch_with_retry(fetch_products, product_ids, **retry))
    if session is not None:
        session.track(task)
    return await task


async def run_print_job(
    product_ids: Sequence[str],
    options: OptionsInput,
    fetch_products: ProductFetcher,
    host: PrintHost,
    session: Optional[PrintSession] = None,
    bulk_cap: int = BULK_LABEL_CAP,
    attempts: int = 3,
    backoff_seconds: float = 0.5,
    sleep=asyncio.sleep,
    unit_serials: Optional[Mapping[str, Sequence[str]]] = None,
) -> PrintJobResult:
    """
    Fetch, build, render and print labels for `product_ids` as one job.

    Validation, data store and host failures end the job as Failed.
    Skipped products and render failures are reported next to a successful
    print. `unit_serials` limits serialized products to the chosen units.

    If `session` is closed mid-job the job is abandoned: in-flight fetch and
    render tasks are cancelled, PrintCancelled is raised, the host is never
    called and nothing more is published.
    """
    def _publish_state(state: PrintJobState):
        if session is not None:
            session.publish(JOB_STATE_TOPIC, state)

    job = PrintJob(on_change=_publish_state)
    issues = []
    stats = None
    render_errors: List[str] = []

    try:
        job.advance(PrintJobState.VALIDATING)
        label_options = validate_options(options)
        if not product_ids:
            raise LabelValidationError("No products selected")

        job.advance(PrintJobState.BUILDING_RECORDS)
        products = await _fetch_products(
            fetch_products, product_ids, session,
            attempts=attempts, backoff_seconds=backoff_seconds, sleep=sleep,
        )
        _ensure_active(session)

        built = build_label_records(products, label_options, bulk_cap=bulk_cap, unit_serials=unit_serials)
        issues = built.issues
        stats = built.stats
        if not built.records:
            reasons = "; ".join(i.message for i in issues) or "no products found"
            raise LabelValidationError(f"No printable labels ({reasons})")

        job.advance(PrintJobState.RENDERING)
        document = await assemble_document(
            built.records,
            label_options,
            session=session,
            on_renders_dispatched=lambda _: job.advance(PrintJobState.AWAITING_RENDER_COMPLETION),
        )
        render_errors = document.render_errors
        _ensure_active(session)

        job.advance(PrintJobState.PRINTING)
        host.print_document(document)

        total = len(built.records) * label_options.copies
        job.succeed(total)
    except PrintCancelled:
        logger.info("Print job abandoned: dialog closed")
        raise
    except asyncio.CancelledError:
        # Our own fetch/render tasks were cancelled by session.close().
        if session is not None and not session.active:
            logger.info("Print job abandoned: dialog closed")
            raise PrintCancelled(f"Print dialog {session.dialog_id} was closed") from None
        raise
    except (LabelPipelineError, DataStoreError) as e:
        job.fail(str(e))
        logger.error("Print job failed: %s", e)
    except Exception as e:
        job.fail(f"Unexpected error: {e}")
        logger.exception("Print job crashed")
        raise

    if job.state is PrintJobState.SUCCEEDED:
        message = f"Printed {job.total_labels} labels"
        if issues:
            message += f" ({len(issues)} skipped, see details)"
        if render_errors:
            message += f" ({len(render_errors)} barcodes could not be drawn)"
    else:
        message = f"Print failed: {job.reason}"

    result = PrintJobResult(
        success=job.state is PrintJobState.SUCCEEDED,
        message=message,
        total_labels=job.total_labels,
        state=job.state,
        issues=issues,
        render_errors=render_errors,
        stats=stats,
    )
    if session is not None:
        _ensure_active(session)
        session.publish(JOB_RESULT_TOPIC, result)
    return result
