import asyncio
import pandas as pd
import streamlit as st
from streamlit.components.v1 import html
from config import (
    LABEL_BULK_CAP,
    LABEL_COMPANY_NAME,
    LABEL_FETCH_ATTEMPTS,
    LABEL_FETCH_BACKOFF_SECONDS,
)
from constants.label_constants import LABEL_TEMPLATES, MAX_COPIES, MIN_COPIES, MM_PER_INCH
from db.orm_session import get_session
from components.common.refresh_tools import REFRESH_TOPIC, refresh_cache
from services.label_data_services import (
    fetch_with_retry,
    get_product_choices,
    get_unit_choices,
    make_session_fetcher,
)
from services.label_services import build_label_records
from services.print_host import BrowserPrintHost
from services.print_services import (
    JOB_RESULT_TOPIC,
    assemble_document_sync,
    preview_labels,
    run_print_job,
    validate_options,
)
from utils.errors import DataStoreError, LabelValidationError, PrintCancelled
from utils.state_manager import StateManager

DIALOG_ID = "labels"
CSS_PX_PER_MM = 96 / MM_PER_INCH


@st.cache_data(ttl=60)
def _load_product_choices() -> list[dict]:
    with get_session() as db:
        return get_product_choices(db)


@st.cache_data(ttl=60)
def _load_unit_choices(product_id: str) -> list[dict]:
    with get_session() as db:
        return get_unit_choices(db, product_id)


def _unit_label(unit: dict) -> str:
    details = []
    if unit["color"]:
        details.append(unit["color"])
    if unit["battery_level"] is not None:
        details.append(f"{unit['battery_level']}%")
    if not details:
        return unit["serial_number"]
    return f"{unit['serial_number']} ({', '.join(details)})"


def _unit_selection(product_ids: list[str], choices_by_id: dict) -> dict[str, list[str]]:
    """Per-product unit pickers; products without unsold units print by stock."""
    selection = {}
    for product_id in product_ids:
        choice = choices_by_id[product_id]
        if not choice["available_units"]:
            continue
        units = {u["serial_number"]: u for u in _load_unit_choices(product_id)}
        serials = list(units.keys())
        key = f"label_units_{product_id}"

        with st.expander(f"Select units to print: {choice['name']}"):
            c1, c2 = st.columns(2)
            if c1.button("Select all", key=f"{key}_all"):
                st.session_state[key] = serials
            if c2.button("Select none", key=f"{key}_none"):
                st.session_state[key] = []
            if key not in st.session_state:
                st.session_state[key] = serials
            selection[product_id] = st.multiselect(
                "Units",
                options=serials,
                key=key,
                format_func=lambda serial: _unit_label(units[serial]),
            )
    return selection


def _render_stats(stats):
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Products", stats.total_products)
    c2.metric("Labels", stats.total_labels)
    c3.metric("Units with barcode", stats.units_with_barcodes)
    c4.metric("Bulk labels", stats.generic_labels)
    if stats.units_missing_barcodes:
        st.warning(f"{stats.units_missing_barcodes} units have no barcode and were skipped.")


def _print_session():
    session = StateManager.print_session(DIALOG_ID)
    if not StateManager.get("print", DIALOG_ID, "wired"):
        session.channel.subscribe(REFRESH_TOPIC, lambda _: _load_product_choices.clear())
        session.channel.subscribe(
            JOB_RESULT_TOPIC,
            lambda result: StateManager.set("print", DIALOG_ID, "last_result", result),
        )
        StateManager.set("print", DIALOG_ID, "wired", True)
    return session


def _choice_label(choice: dict) -> str:
    if choice["available_units"]:
        return f"{choice['name']} ({choice['available_units']} units)"
    return f"{choice['name']} (bulk, stock {choice['stock']})"


def _render_issues(issues):
    if not issues:
        return
    st.warning(f"{len(issues)} products/units were skipped.")
    st.dataframe(
        pd.DataFrame([i.model_dump() for i in issues]),
        use_container_width=True,
        hide_index=True,
    )


def _render_preview(product_ids: list[str], options, unit_serials: dict[str, list[str]]):
    fetch = make_session_fetcher()
    try:
        products = asyncio.run(fetch_with_retry(
            fetch,
            product_ids,
            attempts=LABEL_FETCH_ATTEMPTS,
            backoff_seconds=LABEL_FETCH_BACKOFF_SECONDS,
        ))
    except DataStoreError as e:
        st.error(f"Could not load products: {e}")
        return

    built = build_label_records(products, options, bulk_cap=LABEL_BULK_CAP, unit_serials=unit_serials)
    _render_stats(built.stats)
    _render_issues(built.issues)
    if not built.records:
        st.info("Nothing to preview.")
        return

    labels = preview_labels(built.records, options)
    st.caption(f"{len(labels)} labels × {options.copies} copies = {len(labels) * options.copies} stickers")
    st.dataframe(
        pd.DataFrame([label.model_dump(exclude_none=True) for label in labels]),
        use_container_width=True,
        hide_index=True,
    )

    document = assemble_document_sync(built.records, options.model_copy(update={"copies": 1}))
    for error in document.render_errors:
        st.error(error)

    template = LABEL_TEMPLATES[options.format]
    label_px = int(template["height_mm"] * CSS_PX_PER_MM)
    html(document.html, height=min(len(labels), 3) * (label_px + 20) + 40, scrolling=True)


def render_label_form():
    st.subheader("Print Thermal Labels")

    session = _print_session()
    refresh_cache(session.channel, label="Reload products", key="labels_refresh")

    choices = _load_product_choices()
    if not choices:
        st.info("No products found.")
        return

    options_by_label = {_choice_label(c): c["id"] for c in choices}
    selected = st.multiselect("Products", options=list(options_by_label.keys()))
    product_ids = [options_by_label[s] for s in selected]
    unit_serials = _unit_selection(product_ids, {c["id"]: c for c in choices})

    with st.form("label_options_form"):
        c1, c2 = st.columns(2)
        with c1:
            copies = st.number_input("Copies per label", min_value=MIN_COPIES, max_value=MAX_COPIES, value=1, step=1)
            label_format = st.selectbox(
                "Label size",
                options=list(LABEL_TEMPLATES.keys()),
                format_func=lambda key: LABEL_TEMPLATES[key]["name"],
            )
            company_name = st.text_input("Company name", value=LABEL_COMPANY_NAME)
        with c2:
            include_price = st.checkbox("Price", value=True)
            include_barcode = st.checkbox("Barcode", value=True)
            include_serial = st.checkbox("Serial number", value=True)
            include_company = st.checkbox("Company name", value=bool(LABEL_COMPANY_NAME))
            include_category = st.checkbox("Category", value=False)
            use_master_barcode = st.checkbox(
                "Use product barcode for every unit",
                value=False,
                help="Units share the product's barcode instead of their own.",
            )

        b1, b2 = st.columns(2)
        preview = b1.form_submit_button("Preview", use_container_width=True)
        print_now = b2.form_submit_button("Print", type="primary", use_container_width=True)

    if st.button("Close print dialog", key="labels_close"):
        StateManager.close_print_session(DIALOG_ID)
        st.rerun()

    if not (preview or print_now):
        last = StateManager.get("print", DIALOG_ID, "last_result")
        if last is not None:
            (st.success if last.success else st.error)(last.message)
        return

    if not product_ids:
        st.warning("Select at least one product.")
        return

    try:
        options = validate_options({
            "copies": int(copies),
            "format": label_format,
            "include_price": include_price,
            "include_barcode": include_barcode,
            "include_serial": include_serial,
            "include_company": include_company,
            "include_category": include_category,
            "use_master_barcode": use_master_barcode,
            "company_name": company_name or None,
        })
    except LabelValidationError as e:
        st.error(str(e))
        return

    if preview:
        _render_preview(product_ids, options, unit_serials)
        return

    with st.spinner("Preparing labels..."):
        try:
            result = asyncio.run(run_print_job(
                product_ids,
                options,
                fetch_products=make_session_fetcher(),
                host=BrowserPrintHost(),
                session=session,
                bulk_cap=LABEL_BULK_CAP,
                attempts=LABEL_FETCH_ATTEMPTS,
                backoff_seconds=LABEL_FETCH_BACKOFF_SECONDS,
                unit_serials=unit_serials,
            ))
        except PrintCancelled:
            return

    (st.success if result.success else st.error)(result.message)
    if result.stats is not None:
        _render_stats(result.stats)
    _render_issues(result.issues)
    for error in result.render_errors:
        st.error(error)
