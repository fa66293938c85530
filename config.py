# config.py
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env if present
load_dotenv()

BASE_DIR = Path(__file__).resolve().parent

class Config:
    # Flask
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-change-me")

    # Logging (diagnostic channel for export failures)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Optional on-disk copy of every exported PDF. Empty = download only.
    #   EXPORTS_DIR=/var/lib/invoices/exports
    EXPORTS_DIR = os.getenv("EXPORTS_DIR", "")

    # Export page layout
    # Supersampling factor used when rasterizing the preview (2 = crisp on A4)
    CAPTURE_SCALE = int(os.getenv("CAPTURE_SCALE", "2"))
    PAGE_MARGIN_IN = float(os.getenv("PAGE_MARGIN_IN", "0.5"))

    # Invoice defaults
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "PKR")

    # Preview fonts (DejaVu ships in fonts/ and covers the rupee sign)
    PREVIEW_FONT_PATH = (
        os.getenv("PREVIEW_FONT_PATH") or (BASE_DIR / "fonts" / "DejaVuSans.ttf").as_posix()
    )
    PREVIEW_BOLD_FONT_PATH = (
        os.getenv("PREVIEW_BOLD_FONT_PATH") or (BASE_DIR / "fonts" / "DejaVuSans-Bold.ttf").as_posix()
    )

    # Logo uploads
    MAX_LOGO_BYTES = int(os.getenv("MAX_LOGO_BYTES", str(2 * 1024 * 1024)))
    # Decoded size cap (pixels) so a small file can't expand into a huge bitmap
    MAX_LOGO_PIXELS = int(os.getenv("MAX_LOGO_PIXELS", str(4096 * 4096)))

    # In-memory invoice sessions: oldest idle sessions are dropped past this count
    MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", "500"))
