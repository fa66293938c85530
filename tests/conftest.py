from __future__ import annotations

import io
import base64
from datetime import date

import pytest
from PIL import Image

from app import create_app
from invoice_store import InvoiceEditor


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test",
        "EXPORTS_DIR": "",
        "CAPTURE_SCALE": 1,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def editor():
    return InvoiceEditor(today=date(2024, 3, 15))


def make_png(size=(40, 20), color=(37, 99, 235)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def logo_data_url(png_bytes):
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")
