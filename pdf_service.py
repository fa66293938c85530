# pdf_service.py
import os
import re
import io
import asyncio
import logging
import tempfile
from dataclasses import dataclass
from typing import Optional

from reportlab.pdfgen import canvas
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import inch
from reportlab.lib.utils import ImageReader

from config import Config
from models import Invoice
from preview import PreviewRegion, capture

logger = logging.getLogger(__name__)

# A4 portrait, in inches
PAGE_W_IN, PAGE_H_IN = A4[0] / inch, A4[1] / inch


class ExportError(Exception):
    """Base class for anything that stops a PDF export."""


class CaptureError(ExportError):
    """The preview region was not available to capture."""


class RenderError(ExportError):
    """Rasterizing the preview or composing the page failed."""


class ExportInProgressError(ExportError):
    """Another export for the same invoice is still running."""


@dataclass(frozen=True)
class Placement:
    """Image box on the page, in inches, top-left origin."""
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class ExportResult:
    filename: str
    pdf_bytes: bytes
    bitmap_size: tuple[int, int]
    placement: Placement
    stored_path: Optional[str] = None


def _safe_filename(name: str) -> str:
    # strip characters not allowed on Windows/mac paths
    return re.sub(r'[\\/*?:"<>|]', "", (name or "")).strip() or "Invoice"


def export_filename(invoice: Invoice) -> str:
    return f"invoice-{_safe_filename(invoice.meta.invoice_number)}.pdf"


# -----------------------------
# Page geometry
# -----------------------------
def fit_to_page(
    bitmap_w: float,
    bitmap_h: float,
    page_w: float = PAGE_W_IN,
    page_h: float = PAGE_H_IN,
    margin: float = 0.5,
) -> Placement:
    """
    Scale a bitmap into the page's usable area keeping its aspect ratio.

    Width is tried first; if that makes the image too tall it is sized by height
    instead. The result is centered horizontally and pinned to the top margin.
    """
    if bitmap_w <= 0 or bitmap_h <= 0:
        raise ValueError(f"Bitmap has no area: {bitmap_w}x{bitmap_h}")

    usable_w = page_w - 2 * margin
    usable_h = page_h - 2 * margin
    if usable_w <= 0 or usable_h <= 0:
        raise ValueError(f"Margin {margin} leaves no usable area on a {page_w}x{page_h} page")

    aspect = bitmap_w / bitmap_h

    draw_w = usable_w
    draw_h = draw_w / aspect
    if draw_h > usable_h:
        draw_h = usable_h
        draw_w = draw_h * aspect

    x = margin + (usable_w - draw_w) / 2
    y = margin
    return Placement(x=x, y=y, width=draw_w, height=draw_h)


# -----------------------------
# Compose
# -----------------------------
def compose_pdf(bitmap, placement: Placement, *, title: str = "Invoice") -> bytes:
    """Place `bitmap` on a single A4 page and return the PDF bytes."""
    PAGE_H = A4[1]

    buf = io.BytesIO()
    pdf = canvas.Canvas(buf, pagesize=A4)
    pdf.setTitle(title)

    # reportlab measures from the bottom-left corner in points
    w = placement.width * inch
    h = placement.height * inch
    x = placement.x * inch
    y = PAGE_H - placement.y * inch - h

    png = io.BytesIO()
    bitmap.save(png, format="PNG")
    png.seek(0)
    pdf.drawImage(ImageReader(png), x, y, width=w, height=h)

    pdf.showPage()
    pdf.save()
    return buf.getvalue()


def _store_copy(exports_dir: str, filename: str, pdf_bytes: bytes) -> str:
    """Write via a temp file + rename so a failed write never leaves a partial PDF."""
    os.makedirs(exports_dir, exist_ok=True)
    pdf_path = os.path.abspath(os.path.join(exports_dir, filename))
    fd, tmp_path = tempfile.mkstemp(dir=exports_dir, suffix=".part")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(pdf_bytes)
        os.replace(tmp_path, pdf_path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    return pdf_path


# -----------------------------
# Export pipeline
# -----------------------------
async def export_invoice_pdf(
    region: Optional[PreviewRegion],
    invoice: Invoice,
    *,
    scale: Optional[float] = None,
    margin: Optional[float] = None,
    exports_dir: Optional[str] = None,
    render=None,
) -> ExportResult:
    """
    Capture the rendered preview and lay it onto one A4 page.

    When `render` is given the region is built from the invoice first, and a
    failure there is reported like any other rendering failure.

    Raises CaptureError when there is no region to capture, RenderError when
    laying out, rasterizing, composing or storing fails. Nothing is returned or
    written unless every step succeeds.
    """
    scale = Config.CAPTURE_SCALE if scale is None else scale
    margin = Config.PAGE_MARGIN_IN if margin is None else margin
    exports_dir = Config.EXPORTS_DIR if exports_dir is None else exports_dir
    filename = export_filename(invoice)

    try:
        if render is not None:
            region = await asyncio.to_thread(render, invoice)
        if region is None:
            logger.error("Preview region not found for PDF generation (%s)", filename)
            raise CaptureError("Preview is not available to capture.")

        bitmap = await asyncio.to_thread(capture, region, scale)
        placement = fit_to_page(bitmap.width, bitmap.height, margin=margin)
        pdf_bytes = await asyncio.to_thread(
            compose_pdf, bitmap, placement, title=f"Invoice - {invoice.meta.invoice_number}"
        )
        stored_path = None
        if exports_dir:
            stored_path = await asyncio.to_thread(_store_copy, exports_dir, filename, pdf_bytes)
    except ExportError:
        raise
    except Exception as e:
        logger.exception("Failed to generate PDF %s", filename)
        raise RenderError(f"Failed to generate PDF: {e}") from e

    logger.info(
        "Exported %s (bitmap %dx%d, %.2fx%.2f in)",
        filename, bitmap.width, bitmap.height, placement.width, placement.height,
    )
    return ExportResult(
        filename=filename,
        pdf_bytes=pdf_bytes,
        bitmap_size=(bitmap.width, bitmap.height),
        placement=placement,
        stored_path=stored_path,
    )


async def export_with_guard(editor, render, **kwargs) -> ExportResult:
    """
    Export the editor's current invoice, refusing a second export while the
    first is still in flight. `render` maps the invoice to its preview region.
    """
    if not editor.export_lock.acquire(blocking=False):
        logger.warning("Export requested while another export is running")
        raise ExportInProgressError("An export is already running for this invoice.")
    try:
        invoice = editor.invoice
        return await export_invoice_pdf(None, invoice, render=render, **kwargs)
    finally:
        editor.export_lock.release()
