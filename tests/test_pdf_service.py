import asyncio
import os
import re
from datetime import date

import pytest

import pdf_service
from invoice_store import InvoiceEditor
from models import default_invoice, set_field
from pdf_service import (
    PAGE_H_IN,
    PAGE_W_IN,
    CaptureError,
    ExportInProgressError,
    RenderError,
    export_filename,
    export_invoice_pdf,
    export_with_guard,
    fit_to_page,
)
from preview import render_preview

MARGIN = 0.5
USABLE_W = PAGE_W_IN - 2 * MARGIN
USABLE_H = PAGE_H_IN - 2 * MARGIN


@pytest.fixture
def inv():
    return default_invoice(date(2024, 3, 15))


def test_a4_page_in_inches():
    assert PAGE_W_IN == pytest.approx(8.27, abs=0.01)
    assert PAGE_H_IN == pytest.approx(11.69, abs=0.01)


@pytest.mark.parametrize("w, h", [(1588, 800), (1588, 2400), (100, 1000), (500, 500), (1588, 2336)])
def test_fit_stays_inside_usable_area(w, h):
    p = fit_to_page(w, h, margin=MARGIN)
    assert p.width <= USABLE_W + 1e-9
    assert p.height <= USABLE_H + 1e-9
    assert p.width == pytest.approx(USABLE_W) or p.height == pytest.approx(USABLE_H)
    assert p.width / p.height == pytest.approx(w / h)


def test_wide_bitmap_uses_full_width():
    p = fit_to_page(2000, 1000, margin=MARGIN)
    assert p.width == pytest.approx(USABLE_W)
    assert p.height == pytest.approx(USABLE_W / 2)
    assert p.x == pytest.approx(MARGIN)
    assert p.y == MARGIN


def test_tall_bitmap_is_centered_horizontally():
    p = fit_to_page(100, 1000, margin=MARGIN)
    assert p.height == pytest.approx(USABLE_H)
    assert p.width == pytest.approx(USABLE_H / 10)
    assert p.x == pytest.approx(MARGIN + (USABLE_W - p.width) / 2)
    # top aligned, not vertically centered
    assert p.y == MARGIN


def test_fit_rejects_empty_bitmap():
    with pytest.raises(ValueError):
        fit_to_page(0, 100)


def test_export_filename(inv):
    assert export_filename(inv) == "invoice-INV-2024-001.pdf"
    assert export_filename(set_field(inv, "meta.invoice_number", "A/B:7")) == "invoice-AB7.pdf"


def test_export_produces_single_page_pdf(inv):
    region = render_preview(inv)
    result = asyncio.run(export_invoice_pdf(region, inv, scale=2, exports_dir=""))

    assert result.filename == "invoice-INV-2024-001.pdf"
    assert result.pdf_bytes.startswith(b"%PDF")
    assert re.search(rb"/Count 1\b", result.pdf_bytes)
    assert result.bitmap_size == (region.width * 2, region.height * 2)
    assert result.placement.y == 0.5
    assert result.stored_path is None


def test_export_bitmap_size_is_repeatable(inv):
    r1 = asyncio.run(export_invoice_pdf(render_preview(inv), inv, scale=2, exports_dir=""))
    r2 = asyncio.run(export_invoice_pdf(render_preview(inv), inv, scale=2, exports_dir=""))
    assert r1.bitmap_size == r2.bitmap_size
    assert r1.placement == r2.placement


def test_export_stores_copy(inv, tmp_path):
    result = asyncio.run(export_invoice_pdf(render_preview(inv), inv, scale=1, exports_dir=str(tmp_path)))
    assert result.stored_path == os.path.join(str(tmp_path), "invoice-INV-2024-001.pdf")
    with open(result.stored_path, "rb") as fh:
        assert fh.read() == result.pdf_bytes
    assert not [p for p in os.listdir(tmp_path) if p.endswith(".part")]


def test_missing_region_is_a_capture_error(inv, tmp_path, caplog):
    with pytest.raises(CaptureError):
        asyncio.run(export_invoice_pdf(None, inv, exports_dir=str(tmp_path)))
    assert os.listdir(tmp_path) == []
    assert "Preview region not found" in caplog.text


def test_capture_failure_is_a_render_error(inv, tmp_path, monkeypatch):
    def broken_capture(region, scale):
        raise OSError("canvas exploded")

    monkeypatch.setattr(pdf_service, "capture", broken_capture)
    with pytest.raises(RenderError):
        asyncio.run(export_invoice_pdf(render_preview(inv), inv, exports_dir=str(tmp_path)))
    assert os.listdir(tmp_path) == []


def test_compose_failure_writes_nothing(inv, tmp_path, monkeypatch):
    def broken_compose(bitmap, placement, **kwargs):
        raise RuntimeError("bad page")

    monkeypatch.setattr(pdf_service, "compose_pdf", broken_compose)
    with pytest.raises(RenderError):
        asyncio.run(export_invoice_pdf(render_preview(inv), inv, exports_dir=str(tmp_path)))
    assert os.listdir(tmp_path) == []


def test_guard_refuses_concurrent_export():
    editor = InvoiceEditor(today=date(2024, 3, 15))
    editor.export_lock.acquire()
    try:
        with pytest.raises(ExportInProgressError):
            asyncio.run(export_with_guard(editor, render_preview, exports_dir=""))
    finally:
        editor.export_lock.release()

    result = asyncio.run(export_with_guard(editor, render_preview, scale=1, exports_dir=""))
    assert result.filename == "invoice-INV-2024-001.pdf"
    assert not editor.export_in_progress


def test_guard_releases_after_failure():
    editor = InvoiceEditor(today=date(2024, 3, 15))
    with pytest.raises(CaptureError):
        asyncio.run(export_with_guard(editor, lambda invoice: None, exports_dir=""))
    assert not editor.export_in_progress
    assert editor.invoice.total == 5000.0


def test_empty_invoice_number_falls_back_in_filename(inv):
    assert export_filename(set_field(inv, "meta.invoice_number", "")) == "invoice-Invoice.pdf"
    assert export_filename(set_field(inv, "meta.invoice_number", " /?* ")) == "invoice-Invoice.pdf"


def test_render_failure_is_a_render_error(tmp_path, caplog):
    editor = InvoiceEditor(today=date(2024, 3, 15))

    def broken_render(invoice):
        raise RuntimeError("layout blew up")

    with pytest.raises(RenderError):
        asyncio.run(export_with_guard(editor, broken_render, exports_dir=str(tmp_path)))
    assert not editor.export_in_progress
    assert os.listdir(tmp_path) == []
    assert "Failed to generate PDF" in caplog.text
