import json
from pathlib import Path
from typing import Any

import jwt as pyjwt
from fastapi import Body, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import BaseModel, Field

from . import auth, config
from .analysis import analyze_document
from .batch import bindings_from_rows, load_csv_rows, render_batch, write_batch_zip
from .bindings import validate_binding
from .config import DEFAULT_LINE_TOLERANCE
from .errors import (
    ArtifactEncodingError,
    BackgroundError,
    FontRegistrationError,
    FormStampError,
    TemplateNotFoundError,
    TemplateValidationError,
)
from .extractor import list_fonts, open_document
from .fonts import FontRegistry, FontResolver
from .models import RenderOptions
from .renderer import RenderEngine
from .templates import TemplateStore, export_filename, validate_template_payload

FONT_SUFFIXES = (".ttf", ".otf")

app = FastAPI(title="FormStamp API")

# ── CORS ──────────────────────────────────────────────────────────────────────
# Allow the editor dev server to reach the API during development.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Skipped-Fields", "X-Batch-Success", "X-Batch-Failed"],
)

# ── AUTH MIDDLEWARE ────────────────────────────────────────────────────────────
_PUBLIC_API_PATHS: frozenset[str] = frozenset({
    "/api/health",
    "/api/fonts",  # needed by the font picker before CSS injection
})
# Prefix-match public paths: the browser fetches these directly (CSS @font-face)
_PUBLIC_API_PREFIXES: tuple[str, ...] = ("/api/font-file/",)


@app.middleware("http")
async def _auth_middleware(request: Request, call_next):
    """Reject unauthenticated calls to /api/* when a JWT secret is configured."""
    path = request.url.path
    if (
        not auth.auth_enabled()
        or not path.startswith("/api/")
        or (path in _PUBLIC_API_PATHS and request.method == "GET")
        or any(path.startswith(p) for p in _PUBLIC_API_PREFIXES)
        or request.method == "OPTIONS"
    ):
        return await call_next(request)

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return JSONResponse(
            status_code=401,
            content={"detail": "Missing or invalid Authorization header."},
        )

    token = auth_header.split(" ", 1)[1]
    try:
        auth.decode_token(token)
    except pyjwt.ExpiredSignatureError:
        return JSONResponse(
            status_code=401,
            content={"detail": "Token has expired."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    except pyjwt.InvalidTokenError as exc:
        return JSONResponse(
            status_code=401,
            content={"detail": f"Invalid token: {exc}"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    return await call_next(request)


# ── ERROR MAPPING ─────────────────────────────────────────────────────────────
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "message": "Request validation failed.",
            "detail": exc.errors(),
        },
    )


@app.exception_handler(FormStampError)
async def formstamp_exception_handler(request: Request, exc: FormStampError) -> JSONResponse:
    if isinstance(exc, TemplateNotFoundError):
        status_code = 404
    elif isinstance(exc, (TemplateValidationError, BackgroundError)):
        status_code = 422
    elif isinstance(exc, ArtifactEncodingError):
        status_code = 500
    else:
        # DocumentLoadError, FontRegistrationError and other input problems
        status_code = 400
    content: dict[str, Any] = {"message": str(exc)}
    if isinstance(exc, TemplateValidationError) and exc.errors:
        content["detail"] = json.loads(json.dumps(exc.errors, default=str))
    return JSONResponse(status_code=status_code, content=content)


# ── DEPENDENCIES ──────────────────────────────────────────────────────────────
_font_registry: FontRegistry | None = None


def get_fonts_dir() -> Path:
    return config.FONTS_DIR


def get_font_registry() -> FontRegistry:
    global _font_registry
    if _font_registry is None:
        _font_registry = FontRegistry()
        _font_registry.register_directory(config.FONTS_DIR)
    return _font_registry


def get_store() -> TemplateStore:
    return TemplateStore(config.TEMPLATES_DIR)


def get_engine(registry: FontRegistry = Depends(get_font_registry)) -> RenderEngine:
    return RenderEngine(font_resolver=FontResolver(registry))


class RenderRequest(BaseModel):
    values: dict[str, Any] = Field(default_factory=dict)
    options: RenderOptions = Field(default_factory=RenderOptions)
    filename: str = "filled-form"


def read_upload(upload: UploadFile) -> bytes:
    contents = upload.file.read()
    if not contents:
        raise HTTPException(status_code=400, detail=f"Uploaded file '{upload.filename}' is empty.")
    return contents


def parse_json_form(value: str | None, name: str) -> dict | None:
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=422, detail=f"{name} is not valid JSON: {exc}")
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=422, detail=f"{name} must be a JSON object.")
    return parsed


# ── ENDPOINTS ─────────────────────────────────────────────────────────────────
@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/me")
def current_user(user: dict = Depends(auth.get_current_user)) -> dict[str, Any]:
    return {"sub": user.get("sub", ""), "authEnabled": auth.auth_enabled()}


@app.post("/api/analyze")
def analyze(
    document: UploadFile = File(...),
    page: int = Form(0),
    line_tolerance: float = Form(DEFAULT_LINE_TOLERANCE),
    include_background: bool = Form(True),
) -> dict[str, Any]:
    """Dimensions, suggested label fields and a page background for a PDF."""
    try:
        analysis = analyze_document(
            read_upload(document),
            line_tolerance=line_tolerance,
            page_index=page,
            include_background=include_background,
        )
    except IndexError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return analysis.to_dict()


@app.post("/api/extract-fonts")
def extract_fonts(
    document: UploadFile = File(...),
    registry: FontRegistry = Depends(get_font_registry),
) -> dict[str, Any]:
    """Extract unique font names from a PDF along with how each resolves."""
    doc = open_document(read_upload(document))
    try:
        fonts = list_fonts(doc)
    finally:
        doc.close()

    resolver = FontResolver(registry)
    resolutions = {}
    for font_name in fonts:
        resolution = resolver.resolve(font_name)
        resolutions[font_name] = {
            "family": resolution.family,
            "fallbacks": list(resolution.fallbacks),
            "source": resolution.source,
            "weight": resolution.weight,
            "style": resolution.style,
            "css": resolution.css_family(),
            "backendFont": resolver.backend_font(resolution),
        }
    return {"fonts": fonts, "resolutions": resolutions}


@app.get("/api/templates")
def list_templates(store: TemplateStore = Depends(get_store)) -> dict[str, list[dict[str, str]]]:
    return {"templates": store.list()}


@app.post("/api/templates")
def save_template(payload: dict[str, Any] = Body(...), store: TemplateStore = Depends(get_store)) -> dict[str, str]:
    template = validate_template_payload(payload)
    store.save(template)
    return {"message": "Template saved.", "id": template.id}


@app.post("/api/templates/import")
def import_template_file(
    template_file: UploadFile = File(...),
    store: TemplateStore = Depends(get_store),
) -> dict[str, str]:
    template = store.import_(read_upload(template_file))
    return {"message": "Template imported.", "id": template.id, "name": template.name}


@app.get("/api/templates/{template_id}")
def get_template(template_id: str, store: TemplateStore = Depends(get_store)) -> Any:
    return store.load(template_id).model_dump(mode="json", by_alias=True)


@app.delete("/api/templates/{template_id}")
def delete_template(template_id: str, store: TemplateStore = Depends(get_store)) -> dict[str, str]:
    if not store.delete(template_id):
        raise TemplateNotFoundError(template_id)
    return {"message": f"Template '{template_id}' deleted.", "id": template_id}


@app.get("/api/templates/{template_id}/export")
def export_template_file(template_id: str, store: TemplateStore = Depends(get_store)) -> Response:
    template = store.load(template_id)
    return Response(
        content=store.export(template_id),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(template)}"'},
    )


@app.post("/api/templates/{template_id}/validate")
def validate_values(
    template_id: str,
    values: dict[str, Any] = Body(...),
    store: TemplateStore = Depends(get_store),
) -> dict[str, Any]:
    errors = validate_binding(store.load(template_id), values)
    return {"valid": not errors, "errors": errors}


@app.post("/api/templates/{template_id}/render")
def render_template(
    template_id: str,
    request: RenderRequest,
    store: TemplateStore = Depends(get_store),
    engine: RenderEngine = Depends(get_engine),
) -> Response:
    template = store.load(template_id)
    result = engine.render(template, request.values, request.options)
    filename = f"{Path(request.filename).name or 'filled-form'}{result.extension}"
    return Response(
        content=result.artifact,
        media_type=result.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Skipped-Fields": json.dumps([{"id": field_id, "reason": reason} for field_id, reason in result.skipped_fields]),
        },
    )


@app.post("/api/templates/{template_id}/render-batch")
def render_template_batch(
    template_id: str,
    csv_file: UploadFile = File(...),
    field_mappings_json: str | None = Form(None),
    fixed_values_json: str | None = Form(None),
    target_format: str = Form("document"),
    include_background: bool = Form(True),
    quality: int = Form(95),
    store: TemplateStore = Depends(get_store),
    engine: RenderEngine = Depends(get_engine),
) -> Response:
    template = store.load(template_id)
    try:
        options = RenderOptions(target_format=target_format, include_background=include_background, quality=quality)
        rows = load_csv_rows(read_upload(csv_file))
    except ValueError as exc:
        # pydantic.ValidationError is a ValueError
        raise HTTPException(status_code=422, detail=str(exc))

    bindings = bindings_from_rows(
        rows,
        parse_json_form(field_mappings_json, "field_mappings_json"),
        parse_json_form(fixed_values_json, "fixed_values_json"),
    )
    batch = render_batch(engine, template, bindings, options, max_workers=config.BATCH_MAX_WORKERS)
    if batch.success_count == 0:
        raise HTTPException(status_code=500, detail=f"All {batch.failed_count} render(s) failed.")
    return Response(
        content=write_batch_zip(batch),
        media_type="application/zip",
        headers={
            "Content-Disposition": 'attachment; filename="documents.zip"',
            "X-Batch-Success": str(batch.success_count),
            "X-Batch-Failed": str(batch.failed_count),
        },
    )


@app.get("/api/fonts")
def list_custom_fonts(
    fonts_dir: Path = Depends(get_fonts_dir),
    registry: FontRegistry = Depends(get_font_registry),
) -> dict[str, Any]:
    """List all custom fonts available in the fonts directory."""
    available_fonts = []
    if fonts_dir.exists():
        for font_file in fonts_dir.iterdir():
            if font_file.suffix.lower() not in FONT_SUFFIXES:
                continue
            available_fonts.append({
                "name": font_file.stem,
                "file": font_file.name,
                "type": font_file.suffix.lower().lstrip("."),
                "size_kb": round(font_file.stat().st_size / 1024, 2),
                "url": f"/api/font-file/{font_file.name}",
                "registered": registry.get(font_file.stem) is not None,
            })

    return {
        "fonts_directory": str(fonts_dir),
        "fonts_directory_exists": fonts_dir.exists(),
        "custom_fonts": sorted(available_fonts, key=lambda x: x["name"]),
        "count": len(available_fonts),
    }


@app.get("/api/font-file/{filename}")
def get_font_file(filename: str, fonts_dir: Path = Depends(get_fonts_dir)) -> FileResponse:
    """Serve a custom font file so the editor can load it with @font-face."""
    safe_filename = Path(filename).name
    font_path = fonts_dir / safe_filename

    if font_path.suffix.lower() not in FONT_SUFFIXES:
        raise HTTPException(status_code=400, detail="Only .ttf and .otf font files are supported.")
    if not font_path.exists():
        raise HTTPException(status_code=404, detail=f"Font file '{safe_filename}' not found.")

    media_type = "font/ttf" if font_path.suffix.lower() == ".ttf" else "font/otf"
    return FileResponse(font_path, media_type=media_type, filename=safe_filename)


@app.post("/api/fonts")
def upload_font(
    font_file: UploadFile = File(...),
    fonts_dir: Path = Depends(get_fonts_dir),
    registry: FontRegistry = Depends(get_font_registry),
) -> dict[str, Any]:
    """Upload a custom font file (.ttf or .otf) and register it."""
    filename = font_file.filename or "unknown.ttf"
    suffix = Path(filename).suffix.lower()
    if suffix not in FONT_SUFFIXES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type. Only .ttf and .otf files are allowed. Got: {suffix or filename}",
        )

    # Remove any path components and special chars
    safe_filename = "".join(c for c in Path(filename).name if c.isalnum() or c in ".-_ ")
    target_path = fonts_dir / safe_filename
    if target_path.exists():
        raise HTTPException(
            status_code=409,
            detail=f"Font file '{safe_filename}' already exists. Delete it first or rename your file.",
        )

    contents = read_upload(font_file)
    fonts_dir.mkdir(parents=True, exist_ok=True)
    target_path.write_bytes(contents)
    try:
        font = registry.register_file(target_path)
    except FontRegistrationError:
        target_path.unlink(missing_ok=True)
        raise

    return {
        "message": "Font uploaded successfully",
        "filename": safe_filename,
        "font_name": font.name,
        "family": font.family,
        "size_kb": round(len(contents) / 1024, 2),
    }


@app.delete("/api/fonts/{filename}")
def delete_font(
    filename: str,
    fonts_dir: Path = Depends(get_fonts_dir),
    registry: FontRegistry = Depends(get_font_registry),
) -> dict[str, str]:
    """Delete a custom font file and drop it from the registry."""
    safe_filename = Path(filename).name
    font_path = fonts_dir / safe_filename

    if font_path.suffix.lower() not in FONT_SUFFIXES:
        raise HTTPException(status_code=400, detail="Can only delete .ttf or .otf font files.")
    if not font_path.exists():
        raise HTTPException(status_code=404, detail=f"Font file '{safe_filename}' not found.")

    font_path.unlink()
    registry.remove(font_path.stem)
    return {
        "message": f"Font '{safe_filename}' deleted successfully.",
        "filename": safe_filename,
    }


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(app, host=os.environ.get("FORMSTAMP_HOST", "127.0.0.1"), port=int(os.environ.get("FORMSTAMP_PORT", "8000")))
