# app.py
import io
import base64
import asyncio
import logging

from flask import (
    Flask, render_template, request, redirect, url_for,
    flash, send_file, session, jsonify
)
from PIL import Image, UnidentifiedImageError

from config import Config
from currency import SUPPORTED_CURRENCIES, format_currency, total_label
from models import FieldPath, InvoiceFieldError
from invoice_store import InvoiceStore
from pdf_service import ExportError, export_with_guard
from preview import preview_png, render_preview

logger = logging.getLogger(__name__)

SESSION_KEY = "invoice_session_id"


# -----------------------------
# Helpers
# -----------------------------
def _to_index(s, default=-1) -> int:
    try:
        return int((s or "").strip())
    except (TypeError, ValueError, AttributeError):
        return default


def _decode_logo(raw: bytes, mimetype: str, max_pixels: int = None) -> str:
    max_pixels = Config.MAX_LOGO_PIXELS if max_pixels is None else max_pixels
    try:
        with Image.open(io.BytesIO(raw)) as img:
            w, h = img.size
            if w * h > max_pixels:
                raise InvoiceFieldError(f"Logo is {w}x{h} pixels; use a smaller image.")
            img.verify()
            fmt = (img.format or "").lower()
    except Image.DecompressionBombError as e:
        raise InvoiceFieldError("Logo dimensions are too large; use a smaller image.") from e
    except (OSError, UnidentifiedImageError) as e:
        raise InvoiceFieldError("Logo must be an image file.") from e

    if not (mimetype or "").startswith("image/"):
        mimetype = Image.MIME.get(fmt.upper(), f"image/{fmt or 'png'}")
    return f"data:{mimetype};base64,{base64.b64encode(raw).decode('ascii')}"


async def read_logo_data_url(stream, mimetype: str, max_bytes: int = None, max_pixels: int = None) -> str:
    """Read an uploaded image and return it as a self-contained data URL."""
    max_bytes = Config.MAX_LOGO_BYTES if max_bytes is None else max_bytes
    raw = await asyncio.to_thread(stream.read, max_bytes + 1)
    if not raw:
        raise InvoiceFieldError("No logo file was uploaded.")
    if len(raw) > max_bytes:
        raise InvoiceFieldError(f"Logo is larger than {max_bytes // 1024} KB.")
    return await asyncio.to_thread(_decode_logo, raw, mimetype, max_pixels)


def _parse_repeating_items(form):
    names = form.getlist("item_name")
    types = form.getlist("item_type")
    amounts = form.getlist("item_amount")
    n = max(len(names), len(types), len(amounts))
    out = []
    for i in range(n):
        out.append({
            "name": names[i] if i < len(names) else None,
            "type": types[i] if i < len(types) else None,
            "amount": amounts[i] if i < len(amounts) else None,
        })
    return out


# -----------------------------
# App factory
# -----------------------------
def create_app(config_overrides=None):
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    store = InvoiceStore(
        currency=app.config["DEFAULT_CURRENCY"],
        max_sessions=app.config["MAX_SESSIONS"],
    )
    app.extensions["invoice_store"] = store

    def current_editor():
        sid = session.get(SESSION_KEY)
        if not sid:
            sid = store.new_session_id()
            session[SESSION_KEY] = sid
        return store.get(sid)

    def back():
        return redirect(url_for("builder"))

    # -----------------------------
    # Builder page
    # -----------------------------
    @app.route("/")
    def builder():
        editor = current_editor()
        inv = editor.invoice
        return render_template(
            "builder.html",
            inv=inv,
            currencies=SUPPORTED_CURRENCIES,
            money=lambda x: format_currency(x, inv.currency),
            total_label=total_label(inv.currency),
            export_busy=editor.export_in_progress,
        )

    @app.route("/invoice/state.json")
    def invoice_state():
        return jsonify(current_editor().invoice.to_dict())

    @app.route("/invoice/preview.png")
    def invoice_preview():
        png = preview_png(current_editor().invoice, scale=1)
        resp = send_file(io.BytesIO(png), mimetype="image/png")
        resp.headers["Cache-Control"] = "no-store"
        return resp

    # -----------------------------
    # Field edits
    # -----------------------------
    @app.route("/invoice/fields", methods=["POST"])
    def invoice_fields():
        editor = current_editor()
        fields = [
            (fp, request.form.get(fp.value))
            for fp in FieldPath
            if fp is not FieldPath.LOGO and fp.value in request.form
        ]
        try:
            editor.apply_form(fields, _parse_repeating_items(request.form))
        except InvoiceFieldError as e:
            # nothing from this submission was applied
            flash(str(e), "error")
        return back()

    @app.route("/invoice/items/add", methods=["POST"])
    def invoice_item_add():
        current_editor().add_item()
        return back()

    @app.route("/invoice/items/<int:index>/remove", methods=["POST"])
    def invoice_item_remove(index: int):
        current_editor().remove_item(index)
        return back()

    @app.route("/invoice/items/edit", methods=["POST"])
    def invoice_item_edit():
        editor = current_editor()
        field_name = (request.form.get("field") or "").strip()
        try:
            editor.set_item_field(_to_index(request.form.get("index")), field_name, request.form.get("value", ""))
        except InvoiceFieldError as e:
            flash(str(e), "error")
        return back()

    # -----------------------------
    # Logo
    # -----------------------------
    @app.route("/invoice/logo", methods=["POST"])
    async def invoice_logo_upload():
        editor = current_editor()
        f = request.files.get("logo")
        if not f or not f.filename:
            flash("Choose an image to upload.", "error")
            return back()
        try:
            data_url = await read_logo_data_url(
                f.stream, f.mimetype, app.config["MAX_LOGO_BYTES"], app.config["MAX_LOGO_PIXELS"]
            )
        except InvoiceFieldError as e:
            logger.warning("Logo upload rejected: %s", e)
            flash(str(e), "error")
            return back()
        editor.set_field(FieldPath.LOGO, data_url)
        return back()

    @app.route("/invoice/logo/clear", methods=["POST"])
    def invoice_logo_clear():
        current_editor().set_field(FieldPath.LOGO, "")
        return back()

    # -----------------------------
    # Reset / export
    # -----------------------------
    @app.route("/invoice/reset", methods=["POST"])
    def invoice_reset():
        current_editor().reset()
        flash("Invoice reset.", "success")
        return back()

    @app.route("/invoice/download", methods=["POST"])
    async def invoice_download():
        editor = current_editor()
        try:
            result = await export_with_guard(
                editor,
                render_preview,
                scale=app.config["CAPTURE_SCALE"],
                margin=app.config["PAGE_MARGIN_IN"],
                exports_dir=app.config["EXPORTS_DIR"],
            )
        except ExportError as e:
            flash(str(e), "error")
            return back()

        return send_file(
            io.BytesIO(result.pdf_bytes),
            as_attachment=True,
            download_name=result.filename,
            mimetype="application/pdf"
        )

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True)
