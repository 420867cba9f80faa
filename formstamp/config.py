"""Configuration constants and environment-driven settings.

A ``.env`` file in the working directory is loaded before any setting is read;
variables already set in the environment take precedence.
"""
import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

load_dotenv(find_dotenv(usecwd=True))

ROOT_DIR = Path(__file__).resolve().parent

# Units
POINTS_PER_INCH = 72.0
DEFAULT_DPI = 72.0

# Typography
LINE_HEIGHT_RATIO = 1.2  # lineHeight = fontSize * 1.2, shared by preview and output
DEFAULT_FONT_FAMILY = "Helvetica"
DEFAULT_FONT_SIZE = 12.0
DEFAULT_COLOR = "#000000"
CHECKBOX_MARK_FONT = "ZapfDingbats"
CHECKBOX_MARK = "4"  # check mark glyph in ZapfDingbats

# Detection
DEFAULT_LINE_TOLERANCE = 5.0
LABEL_PATTERNS_FILE = ROOT_DIR / "data" / "label_patterns.json"

# Editor
MIN_ZOOM = 0.1
MAX_ZOOM = 3.0
ZOOM_STEP = 0.1
FIT_PADDING = 20.0

# Templates
TEMPLATE_SCHEMA_VERSION = "1.0.0"

# Rendering
DEFAULT_QUALITY = 95
BACKGROUND_PAGE_SCALE = 2.0

# Progress milestones (0-100) for render progress callbacks
PROGRESS_STEPS = {
    "START": 0.0,
    "CANVAS": 20.0,
    "BACKGROUND": 40.0,
    "FIELDS_END": 90.0,
    "ENCODE": 95.0,
    "COMPLETE": 100.0,
}

# Environment
FONTS_DIR = Path(os.environ.get("FORMSTAMP_FONTS_DIR", str(ROOT_DIR.parent / "fonts")))
TEMPLATES_DIR = Path(os.environ.get("FORMSTAMP_TEMPLATES_DIR", str(ROOT_DIR.parent / "templates_store")))
BATCH_MAX_WORKERS = int(os.environ.get("FORMSTAMP_BATCH_WORKERS", "4"))
FONT_FETCH_TIMEOUT = float(os.environ.get("FORMSTAMP_FONT_FETCH_TIMEOUT", "15"))
JWT_SECRET = os.environ.get("FORMSTAMP_JWT_SECRET", "")
JWT_AUDIENCE = os.environ.get("FORMSTAMP_JWT_AUDIENCE", "")
