# preview.py
"""
Invoice preview: a fixed-width layout of the current invoice, and the raster
capture of that layout used both for the on-page preview and the PDF export.

render_preview() only measures and positions (CSS-pixel units, top-left origin).
capture() paints the result with Pillow at a supersampling scale.
"""
from __future__ import annotations

import base64
import binascii
import io
import logging
import math
import re
from dataclasses import dataclass
from functools import lru_cache

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from config import Config
from currency import format_currency, total_label
from models import Invoice

logger = logging.getLogger(__name__)

PREVIEW_WIDTH = 794     # A4 width at 96 dpi
PAD = 48
COL_GAP = 32

BRAND_DARK = "#0f172a"
BRAND_MUTED = "#64748b"
TEXT = "#111827"
LINE_COLOR = "#e2e8f0"
SOFT_BG = "#f8fafc"
WHITE = "#ffffff"

LOGO_MAX_W = 200
LOGO_MAX_H = 80


# -----------------------------
# Layout primitives
# -----------------------------
@dataclass(frozen=True)
class TextOp:
    x: float
    y: float
    text: str
    size: int
    bold: bool = False
    color: str = TEXT
    align: str = "left"     # left | right | center, relative to x


@dataclass(frozen=True)
class RuleOp:
    x0: float
    x1: float
    y: float
    color: str = LINE_COLOR
    width: int = 1


@dataclass(frozen=True)
class BoxOp:
    x: float
    y: float
    w: float
    h: float
    fill: str = SOFT_BG


@dataclass(frozen=True)
class ImageOp:
    x: float
    y: float
    w: float
    h: float
    data_url: str


@dataclass(frozen=True)
class PreviewRegion:
    width: int
    height: int
    ops: tuple


# -----------------------------
# Fonts / text measuring
# -----------------------------
@lru_cache(maxsize=64)
def _font(size: int, bold: bool = False):
    path = (Config.PREVIEW_BOLD_FONT_PATH if bold else "") or Config.PREVIEW_FONT_PATH
    if path:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            logger.warning("Preview font not loadable: %s (using default)", path)
    return ImageFont.load_default(size=size)


def _text_width(text: str, size: int, bold: bool = False) -> float:
    return _font(size, bold).getlength(str(text))


def _wrap_text(text, size, max_width, bold=False):
    words = str(text).split()
    lines = []
    current = ""

    def split_long_token(token: str):
        if _text_width(token, size, bold) <= max_width:
            return [token]
        chunks = []
        remaining = token
        while remaining:
            lo, hi = 1, len(remaining)
            fit = 1
            while lo <= hi:
                mid = (lo + hi) // 2
                if _text_width(remaining[:mid], size, bold) <= max_width:
                    fit = mid
                    lo = mid + 1
                else:
                    hi = mid - 1
            chunks.append(remaining[:fit])
            remaining = remaining[fit:]
        return chunks

    for word in words:
        for piece in split_long_token(word):
            candidate = f"{current} {piece}" if current else piece
            if _text_width(candidate, size, bold) <= max_width:
                current = candidate
            else:
                if current:
                    lines.append(current)
                current = piece
    if current:
        lines.append(current)
    return lines


def _wrap_multiline(text, size, max_width, bold=False):
    out = []
    for raw in re.split(r"\r?\n", str(text or "")):
        out.extend(_wrap_text(raw, size, max_width, bold))
    return out


def _line_h(size: int) -> float:
    return round(size * 1.45, 2)


# -----------------------------
# Logo
# -----------------------------
_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+)?(?P<b64>;base64)?,(?P<data>.*)$", re.S)


def decode_data_url(data_url: str) -> bytes:
    m = _DATA_URL_RE.match(data_url or "")
    if not m or not m.group("b64"):
        raise ValueError("Not a base64 data URL")
    try:
        return base64.b64decode(m.group("data"), validate=True)
    except binascii.Error as e:
        raise ValueError(f"Bad base64 payload: {e}") from e


@lru_cache(maxsize=4)
def _logo_image(data_url: str):
    try:
        img = Image.open(io.BytesIO(decode_data_url(data_url)))
        w, h = img.size
        if w * h > Config.MAX_LOGO_PIXELS:
            raise ValueError(f"Logo is {w}x{h} pixels, over the {Config.MAX_LOGO_PIXELS} pixel limit")
        img.load()
        return img.convert("RGBA")
    except (ValueError, OSError, UnidentifiedImageError, Image.DecompressionBombError) as e:
        logger.warning("Skipping logo that could not be decoded: %s", e)
        return None


# -----------------------------
# Layout
# -----------------------------
def render_preview(invoice: Invoice, width: int = PREVIEW_WIDTH) -> PreviewRegion:
    ops = []
    left = PAD
    right = width - PAD
    content_w = right - left
    y = PAD

    def text(x, y0, s, size, **kw):
        ops.append(TextOp(x=x, y=y0, text=str(s), size=size, **kw))

    # Header: logo left, title right
    header_h = 44
    if invoice.logo:
        img = _logo_image(invoice.logo)
        if img is not None:
            iw, ih = img.size
            scale = min(LOGO_MAX_W / iw, LOGO_MAX_H / ih, 1.0)
            lw, lh = iw * scale, ih * scale
            ops.append(ImageOp(x=left, y=y, w=lw, h=lh, data_url=invoice.logo))
            header_h = max(header_h, lh)
    text(right, y, invoice.title, 32, bold=True, color=BRAND_DARK, align="right")
    y += header_h + 20
    ops.append(RuleOp(left, right, y, color=BRAND_DARK, width=2))
    y += 24

    # Parties
    col_w = (content_w - COL_GAP) / 2

    def party(x, title, name, lines):
        cy = y
        text(x, cy, title, 11, bold=True, color=BRAND_MUTED)
        cy += _line_h(11) + 4
        for ln in _wrap_multiline(name, 14, col_w, bold=True):
            text(x, cy, ln, 14, bold=True)
            cy += _line_h(14)
        for raw in lines:
            for ln in _wrap_multiline(raw, 12, col_w):
                text(x, cy, ln, 12)
                cy += _line_h(12)
        return cy

    s, r = invoice.sender, invoice.recipient
    y_from = party(left, "FROM", s.name, [s.address, s.email, s.phone])
    y_to = party(left + col_w + COL_GAP, "TO", r.company, [r.address, r.email])
    y = max(y_from, y_to) + 24

    # Meta strip
    meta = invoice.meta
    meta_cells = [f"Invoice #: {meta.invoice_number}", f"Date: {meta.date}"]
    if meta.service_period:
        meta_cells.append(f"Service Period: {meta.service_period}")
    cell_w = content_w / len(meta_cells)
    wrapped = [_wrap_text(c, 12, cell_w - 24) or [""] for c in meta_cells]
    strip_h = max(len(w) for w in wrapped) * _line_h(12) + 20
    ops.append(BoxOp(left, y, content_w, strip_h))
    for i, lines in enumerate(wrapped):
        cy = y + 10
        for ln in lines:
            text(left + i * cell_w + 12, cy, ln, 12)
            cy += _line_h(12)
    y += strip_h + 24

    # Items table
    col_widths = [content_w * 0.45, content_w * 0.30, content_w * 0.25]
    head_h = _line_h(12) + 12
    ops.append(BoxOp(left, y, content_w, head_h, fill=BRAND_DARK))
    text(left + 10, y + 6, "Project / Service", 12, bold=True, color=WHITE)
    text(left + col_widths[0] + 10, y + 6, "Type", 12, bold=True, color=WHITE)
    text(right - 10, y + 6, "Amount", 12, bold=True, color=WHITE, align="right")
    y += head_h

    for item in invoice.items:
        name_lines = _wrap_multiline(item.name, 12, col_widths[0] - 20) or [""]
        type_lines = _wrap_multiline(item.type, 12, col_widths[1] - 20) or [""]
        row_h = max(len(name_lines), len(type_lines)) * _line_h(12) + 14
        cy = y + 7
        for ln in name_lines:
            text(left + 10, cy, ln, 12)
            cy += _line_h(12)
        cy = y + 7
        for ln in type_lines:
            text(left + col_widths[0] + 10, cy, ln, 12)
            cy += _line_h(12)
        text(right - 10, y + 7, format_currency(item.amount, invoice.currency), 12, align="right")
        y += row_h
        ops.append(RuleOp(left, right, y))
    y += 20

    # Total
    total_str = format_currency(invoice.total, invoice.currency)
    total_w = _text_width(total_str, 16, bold=True)
    text(right, y, total_str, 16, bold=True, color=BRAND_DARK, align="right")
    text(right - total_w - 16, y + 2, total_label(invoice.currency), 14, bold=True, align="right")
    y += _line_h(16) + 28

    # Bank details
    bank = invoice.bank
    text(left, y, "Bank Details", 14, bold=True, color=BRAND_DARK)
    y += _line_h(14) + 6
    bank_rows = [("Bank", bank.name), ("Account Title", bank.account_title), ("IBAN", bank.iban)]
    if bank.account_number:
        bank_rows.append(("Account Number", bank.account_number))
    if bank.swift:
        bank_rows.append(("SWIFT/BIC", bank.swift))
    if bank.address:
        bank_rows.append(("Address", bank.address))
    for label, value in bank_rows:
        label_txt = f"{label}: "
        label_w = _text_width(label_txt, 12, bold=True)
        text(left, y, label_txt, 12, bold=True)
        lines = _wrap_multiline(value, 12, content_w - label_w) or [""]
        for ln in lines:
            text(left + label_w, y, ln, 12)
            y += _line_h(12)
    y += 24

    # Footer
    ops.append(RuleOp(left, right, y))
    y += 16
    for ln in _wrap_multiline(invoice.footer_note, 12, content_w):
        text(width / 2, y, ln, 12, color=BRAND_MUTED, align="center")
        y += _line_h(12)

    return PreviewRegion(width=int(width), height=int(math.ceil(y + PAD)), ops=tuple(ops))


# -----------------------------
# Raster capture
# -----------------------------
def capture(region: PreviewRegion, scale: int | float = 2) -> Image.Image:
    """Paint `region` into an RGB bitmap of (width*scale, height*scale) pixels."""
    if scale <= 0:
        raise ValueError(f"Capture scale must be positive, got {scale}")

    out_w = int(math.ceil(region.width * scale))
    out_h = int(math.ceil(region.height * scale))
    img = Image.new("RGB", (out_w, out_h), WHITE)
    draw = ImageDraw.Draw(img)

    def s(v):
        return int(round(v * scale))

    for op in region.ops:
        if isinstance(op, BoxOp):
            draw.rectangle([s(op.x), s(op.y), s(op.x + op.w) - 1, s(op.y + op.h) - 1], fill=op.fill)
        elif isinstance(op, RuleOp):
            draw.line([(s(op.x0), s(op.y)), (s(op.x1), s(op.y))], fill=op.color, width=max(1, s(op.width)))
        elif isinstance(op, TextOp):
            font = _font(max(1, s(op.size)), op.bold)
            x = s(op.x)
            if op.align == "right":
                x -= font.getlength(op.text)
            elif op.align == "center":
                x -= font.getlength(op.text) / 2
            draw.text((x, s(op.y)), op.text, font=font, fill=op.color)
        elif isinstance(op, ImageOp):
            logo = _logo_image(op.data_url)
            if logo is None:
                continue
            w, h = max(1, s(op.w)), max(1, s(op.h))
            resized = logo.resize((w, h), Image.Resampling.LANCZOS)
            img.paste(resized, (s(op.x), s(op.y)), resized)
    return img


def preview_png(invoice: Invoice, scale: int | float = 1) -> bytes:
    buf = io.BytesIO()
    capture(render_preview(invoice), scale).save(buf, format="PNG")
    return buf.getvalue()
