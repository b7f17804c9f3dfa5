import asyncio
import re
import threading
from decimal import Decimal

import pytest

from conftest import EAN_A, EAN_B
from schemas.label_schemas import LabelOptions, LabelRecord, PrintJobState
from services import print_services
from services.print_services import (
    JOB_RESULT_TOPIC,
    JOB_STATE_TOPIC,
    PrintJob,
    assemble_document,
    assemble_document_sync,
    preview_labels,
    run_print_job,
    validate_options,
)
from utils.errors import HostError, LabelValidationError, PrintCancelled, TransientDataStoreError
from utils.event_channel import PrintSession

BLOCK = re.compile(r'data-record="(\d+)" data-copy="(\d+)"')


class RecordingHost:
    def __init__(self, error=None):
        self.documents = []
        self.error = error

    def print_document(self, document):
        if self.error:
            raise self.error
        self.documents.append(document)


def _records(*barcodes):
    return [
        LabelRecord(product_id=f"p{i}", product_name=f"Item {i}", barcode=b, price=Decimal("5"))
        for i, b in enumerate(barcodes)
    ]


@pytest.fixture
def no_render(monkeypatch):
    calls = []

    async def fake_render(*args, **kwargs):
        calls.append(args)
        raise AssertionError("rendering must not start")

    monkeypatch.setattr(print_services, "render_barcode_async", fake_render)
    return calls


class TestValidation:
    @pytest.mark.parametrize("bad", [{"copies": 0}, {"copies": 51}, {"format": "fancy"}, {"copies": "many"}, {"colour": "red"}])
    def test_assemble_rejects_bad_options_before_rendering(self, no_render, bad):
        with pytest.raises(LabelValidationError):
            asyncio.run(assemble_document(_records("A1"), bad))
        assert no_render == []

    def test_assemble_rejects_empty_records(self, no_render):
        with pytest.raises(LabelValidationError, match="No labels"):
            asyncio.run(assemble_document([], {"copies": 1}))
        assert no_render == []

    def test_assemble_rejects_record_without_barcode(self, no_render):
        with pytest.raises(LabelValidationError):
            asyncio.run(assemble_document([{"product_id": "p", "product_name": "X", "barcode": "", "price": 1}], {}))

    def test_options_instances_are_rechecked(self):
        forged = LabelOptions.model_construct(copies=0, format="standard")
        with pytest.raises(LabelValidationError, match="copies"):
            validate_options(forged)

    def test_boundaries_are_accepted(self):
        assert validate_options({"copies": 1}).copies == 1
        assert validate_options({"copies": 50, "format": "compact"}).copies == 50


class TestAssembleDocument:
    def test_copies_of_a_record_stay_together(self):
        document = asyncio.run(assemble_document(_records("A1", "B2", "C3"), {"copies": 3}))

        blocks = [(int(r), int(c)) for r, c in BLOCK.findall(document.html)]
        assert blocks == [(0, 1), (0, 2), (0, 3), (1, 1), (1, 2), (1, 3), (2, 1), (2, 2), (2, 3)]
        assert document.label_count == 9
        assert document.record_count == 3

    @pytest.mark.parametrize("fmt,height", [("standard", 50.0), ("compact", 30.0)])
    def test_physical_size_in_millimetres(self, fmt, height):
        document = asyncio.run(assemble_document(_records("A1"), {"format": fmt}))

        assert (document.width_mm, document.height_mm) == (60.0, height)
        assert f"size: 60.0mm {height}mm;" in document.html
        assert f"height: {height}mm;" in document.html
        assert "page-break-after: always" in document.html

    def test_one_render_per_record_not_per_copy(self, monkeypatch):
        rendered = []
        original = print_services.render_barcode_async

        async def counting(value, *args, **kwargs):
            rendered.append(value)
            return await original(value, *args, **kwargs)

        monkeypatch.setattr(print_services, "render_barcode_async", counting)
        document = asyncio.run(assemble_document(_records("A1", "B2"), {"copies": 4}))

        assert sorted(rendered) == ["A1", "B2"]
        assert document.html.count('class="barcode"') == 8

    def test_barcodes_omitted_when_disabled(self, no_render):
        document = asyncio.run(assemble_document(_records("A1"), {"include_barcode": False}))

        assert 'class="barcode"' not in document.html
        assert "data:image/png" not in document.html

    def test_render_failure_gets_placeholder_not_abort(self):
        errors = []
        records = _records(EAN_A, "4006381333932", "OK-1")

        document = asyncio.run(assemble_document(records, {"copies": 2}, on_render_error=lambda v, e: errors.append(v)))

        assert document.label_count == 6
        assert errors == ["4006381333932"]
        assert len(document.render_errors) == 1
        assert document.html.count("barcode-error") == 2
        assert 'data-symbology="EAN13"' in document.html

    def test_markup_is_escaped(self):
        record = LabelRecord(product_id="p", product_name="<script>x</script>", barcode="A1", price=Decimal("1"))

        document = asyncio.run(assemble_document([record], {}))

        assert "<script>" not in document.html
        assert "&lt;SCRIPT&gt;" in document.html

    def test_same_inputs_same_document(self):
        first = assemble_document_sync(_records("A1", EAN_B), {"copies": 2})
        second = assemble_document_sync(_records("A1", EAN_B), {"copies": 2})

        assert first.html == second.html

    def test_preview_matches_document_text(self):
        labels = preview_labels(_records("A1"), {"include_price": True})

        document = assemble_document_sync(_records("A1"), {"include_price": True})
        assert labels[0].price_text == "€5.00"
        assert labels[0].price_text in document.html
        assert labels[0].product_name in document.html


class TestPrintJob:
    def test_happy_path_states(self):
        job = PrintJob()
        for state in (
            PrintJobState.VALIDATING,
            PrintJobState.BUILDING_RECORDS,
            PrintJobState.RENDERING,
            PrintJobState.AWAITING_RENDER_COMPLETION,
            PrintJobState.PRINTING,
        ):
            job.advance(state)
        job.succeed(12)

        assert job.finished
        assert job.total_labels == 12
        assert job.history[0] is PrintJobState.IDLE

    def test_cannot_skip_states(self):
        with pytest.raises(RuntimeError):
            PrintJob().advance(PrintJobState.PRINTING)

    def test_failed_is_terminal(self):
        job = PrintJob()
        job.advance(PrintJobState.VALIDATING)
        job.fail("bad copies")

        assert job.state is PrintJobState.FAILED
        assert job.reason == "bad copies"
        with pytest.raises(RuntimeError):
            job.fail("again")
        with pytest.raises(RuntimeError):
            job.advance(PrintJobState.BUILDING_RECORDS)


class TestRunPrintJob:
    @pytest.fixture
    def products(self, make_product, make_unit):
        product_a = make_product(
            "A",
            units=[make_unit("S1", barcode="1111111111116"), make_unit("S2", barcode="2222222222222")],
        )
        product_b = make_product("B", stock=3, barcode="BULK-B")
        return [product_a, product_b]

    def test_end_to_end_counts_and_order(self, products):
        host = RecordingHost()
        fetched = []

        def fetch(ids):
            fetched.append(list(ids))
            return products

        result = asyncio.run(run_print_job(["A", "B"], {"copies": 2}, fetch, host))

        assert result.success
        assert result.state is PrintJobState.SUCCEEDED
        assert result.total_labels == 10
        assert fetched == [["A", "B"]]
        document = host.documents[0]
        assert document.record_count == 5
        blocks = [int(r) for r, _ in BLOCK.findall(document.html)]
        assert blocks == [0, 0, 1, 1, 2, 2, 3, 3, 4, 4]
        # Product A's four stickers come before product B's six.
        assert document.html.index("SN: S2") < document.html.index("BULK-B")

    def test_host_runs_after_every_render_finished(self, products, monkeypatch):
        finished = []
        original = print_services.render_barcode_async

        async def slow(value, *args, **kwargs):
            await asyncio.sleep(0.01)
            rendered = await original(value, *args, **kwargs)
            finished.append(value)
            return rendered

        class CheckingHost(RecordingHost):
            def print_document(self, document):
                assert len(finished) == document.record_count
                super().print_document(document)

        monkeypatch.setattr(print_services, "render_barcode_async", slow)
        host = CheckingHost()

        result = asyncio.run(run_print_job(["A", "B"], {}, lambda ids: products, host))

        assert result.success
        assert len(host.documents) == 1

    def test_validation_failure_does_not_fetch(self):
        def fetch(ids):
            raise AssertionError("must not fetch")

        result = asyncio.run(run_print_job(["A"], {"copies": 0}, fetch, RecordingHost()))

        assert not result.success
        assert result.state is PrintJobState.FAILED
        assert "copies" in result.message

    def test_no_products_selected(self):
        result = asyncio.run(run_print_job([], {}, lambda ids: [], RecordingHost()))
        assert not result.success
        assert "No products selected" in result.message

    def test_nothing_printable_fails_with_reasons(self, make_product):
        host = RecordingHost()
        result = asyncio.run(run_print_job(["X"], {}, lambda ids: [make_product("X", barcode=None)], host))

        assert not result.success
        assert "missing required barcode" in result.message
        assert host.documents == []
        assert len(result.issues) == 1

    def test_partial_success_reports_skips(self, products, make_product):
        broken = make_product("C", brand=None)
        result = asyncio.run(run_print_job(["A", "B", "C"], {}, lambda ids: products + [broken], RecordingHost()))

        assert result.success
        assert result.total_labels == 5
        assert [i.product_id for i in result.issues] == ["C"]
        assert "1 skipped" in result.message

    def test_host_error_fails_job_with_hint(self, products):
        host = RecordingHost(error=HostError("Print window blocked"))

        result = asyncio.run(run_print_job(["A"], {}, lambda ids: products, host))

        assert not result.success
        assert result.state is PrintJobState.FAILED
        assert "allow popups" in result.message.lower()
        assert result.total_labels == 0

    def test_transient_fetch_errors_are_retried(self, products):
        calls = []
        delays = []

        def flaky(ids):
            calls.append(1)
            if len(calls) < 3:
                raise TransientDataStoreError("connection reset")
            return products

        async def no_sleep(delay):
            delays.append(delay)

        result = asyncio.run(run_print_job(["A", "B"], {}, flaky, RecordingHost(), backoff_seconds=0.5, sleep=no_sleep))

        assert result.success
        assert len(calls) == 3
        assert delays == [0.5, 1.0]

    def test_fetch_gives_up_after_attempts(self):
        calls = []

        def down(ids):
            calls.append(1)
            raise TransientDataStoreError("timeout")

        async def no_sleep(delay):
            pass

        result = asyncio.run(run_print_job(["A"], {}, down, RecordingHost(), attempts=3, sleep=no_sleep))

        assert not result.success
        assert len(calls) == 3

    def test_publishes_states_and_result_on_session(self, products):
        session = PrintSession("test")
        states, results = [], []
        session.channel.subscribe(JOB_STATE_TOPIC, states.append)
        session.channel.subscribe(JOB_RESULT_TOPIC, results.append)

        result = asyncio.run(run_print_job(["A", "B"], {}, lambda ids: products, RecordingHost(), session=session))

        assert states == [
            PrintJobState.VALIDATING,
            PrintJobState.BUILDING_RECORDS,
            PrintJobState.RENDERING,
            PrintJobState.AWAITING_RENDER_COMPLETION,
            PrintJobState.PRINTING,
            PrintJobState.SUCCEEDED,
        ]
        assert results == [result]

    def test_fetch_runs_off_the_event_loop(self, products):
        threads = []

        def fetch(ids):
            threads.append(threading.current_thread())
            return products

        result = asyncio.run(run_print_job(["A"], {}, fetch, RecordingHost()))

        assert result.success
        assert threads and threads[0] is not threading.main_thread()

    def test_closing_during_fetch_abandons_job(self, products):
        session = PrintSession("test")
        seen = []
        session.channel.subscribe(JOB_RESULT_TOPIC, seen.append)
        host = RecordingHost()
        started, release = threading.Event(), threading.Event()
        ticks = []

        def slow_fetch(ids):
            started.set()
            release.wait(5)
            return products

        async def scenario():
            job = asyncio.ensure_future(run_print_job(["A", "B"], {}, slow_fetch, host, session=session))
            try:
                while not started.is_set():
                    await asyncio.sleep(0.01)
                # The loop keeps running while the store read is in flight.
                ticks.append(await asyncio.sleep(0.01, "tick"))
                session.close()
                with pytest.raises(PrintCancelled):
                    await job
            finally:
                release.set()

        asyncio.run(scenario())

        assert ticks == ["tick"]
        assert seen == []
        assert host.documents == []

    def test_closing_during_render_abandons_job(self, products, monkeypatch):
        session = PrintSession("test")
        seen = []
        session.channel.subscribe(JOB_RESULT_TOPIC, seen.append)
        host = RecordingHost()

        async def close_then_wait(*args, **kwargs):
            session.close()
            await asyncio.sleep(10)

        monkeypatch.setattr(print_services, "render_barcode_async", close_then_wait)

        with pytest.raises(PrintCancelled):
            asyncio.run(run_print_job(["A", "B"], {}, lambda ids: products, host, session=session))

        assert seen == []
        assert host.documents == []

    def test_closed_before_build_raises_print_cancelled(self, products):
        session = PrintSession("test")
        session.close()

        with pytest.raises(PrintCancelled):
            asyncio.run(run_print_job(["A"], {}, lambda ids: products, RecordingHost(), session=session))

    def test_unit_selection_and_stats_reach_the_result(self, products):
        host = RecordingHost()

        result = asyncio.run(run_print_job(
            ["A", "B"], {}, lambda ids: products, host, unit_serials={"A": ["S2"]},
        ))

        assert result.success
        assert result.total_labels == 4
        assert "SN: S1" not in host.documents[0].html
        assert result.stats.units_with_barcodes == 1
        assert result.stats.generic_labels == 3
