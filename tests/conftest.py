import io
from contextlib import contextmanager

import pytest
from reportlab.pdfgen import canvas

from formstamp.models import FieldDefinition, Template
from formstamp.renderer import RenderEngine


class RecordingSurface:
    """In-memory surface with fixed-width metrics: each glyph is ``size / 2`` wide."""

    instances: list["RecordingSurface"] = []

    def __init__(self, width: float, height: float):
        self.width = width
        self.height = height
        self.calls: list[tuple] = []
        self.clips: list[tuple] = []
        RecordingSurface.instances.append(self)

    def measure_text(self, text, font_name, size):
        return len(text) * size * 0.5

    def draw_text(self, text, x, y, font_name, size, color, align="left"):
        self.calls.append(("text", text, x, y, font_name, size, color, align))

    def draw_image(self, data, x, y, width, height):
        self.calls.append(("image", len(data), x, y, width, height))

    @contextmanager
    def clip_rect(self, x, y, width, height):
        self.clips.append((x, y, width, height))
        yield

    def finish(self):
        return b"%PDF-recorded"

    @property
    def texts(self):
        return [call for call in self.calls if call[0] == "text"]


@pytest.fixture
def recording_engine():
    RecordingSurface.instances = []
    engine = RenderEngine(surface_factory=RecordingSurface)
    engine.surfaces = RecordingSurface.instances
    return engine


@pytest.fixture
def make_template():
    def _make(fields=(), width=612, height=792, display=None, background=""):
        payload = {
            "id": "template_test",
            "templateName": "Test Template",
            "pdfDimensions": {"width": width, "height": height},
            "backgroundImage": background,
            "fields": [f.model_dump(by_alias=True) if isinstance(f, FieldDefinition) else f for f in fields],
        }
        if display is not None:
            payload["canvasDimensions"] = {"width": display[0], "height": display[1]}
        return Template.model_validate(payload)

    return _make


@pytest.fixture
def make_pdf():
    """Build a PDF whose pages draw the given ``(text, x, y, font, size)`` runs."""

    def _make(pages, pagesize=(612, 792)):
        packet = io.BytesIO()
        c = canvas.Canvas(packet, pagesize=pagesize, invariant=1)
        for runs in pages:
            for text, x, y, font, size in runs:
                c.setFont(font, size)
                c.drawString(x, y, text)
            c.showPage()
        c.save()
        return packet.getvalue()

    return _make
