import argparse
import json
import logging
import sys
from pathlib import Path

from .analysis import analyze_document
from .batch import artifact_name, bindings_from_rows, load_csv_rows, merge_row, render_batch, write_batch_zip
from .config import BATCH_MAX_WORKERS, DEFAULT_LINE_TOLERANCE, DEFAULT_QUALITY, FONTS_DIR
from .detector import HEIGHT_POLICIES, FieldCandidateDetector, LabelPatternSet
from .errors import FormStampError
from .extractor import extract_document
from .fonts import FontRegistry, FontResolver
from .models import RenderOptions
from .renderer import RenderEngine
from .templates import TemplateSession, export_template, import_template, new_template

TARGET_FORMATS = ["document", "raster-lossless", "raster-lossy"]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Detect form fields in PDFs and stamp data values onto document templates."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    extract = sub.add_parser("extract", help="Print positioned text runs from a PDF.")
    extract.add_argument("--document", required=True, help="Path to the source PDF.")
    extract.add_argument("--page", type=int, default=None, help="Zero-based page index (default: all pages).")
    extract.add_argument("--contains", help="Filter runs containing this text (case-insensitive).")
    extract.add_argument("--min-len", type=int, default=1, help="Minimum text length to include.")
    extract.add_argument("--max-items", type=int, default=0, help="Limit number of items (0 = no limit).")
    extract.add_argument("--password", help="Password for encrypted documents.")
    extract.add_argument("--output-json", help="Optional JSON output path for extracted runs.")

    detect = sub.add_parser("detect", help="Detect label candidates on a PDF page.")
    detect.add_argument("--document", required=True, help="Path to the source PDF.")
    detect.add_argument("--page", type=int, default=0, help="Zero-based page index.")
    detect.add_argument("--tolerance", type=float, default=DEFAULT_LINE_TOLERANCE, help="Line grouping tolerance in points.")
    detect.add_argument("--patterns", help="JSON file with label patterns (default: bundled set).")
    detect.add_argument("--height-policy", choices=HEIGHT_POLICIES, default="max", help="Height of merged lines.")
    detect.add_argument("--all-lines", action="store_true", help="Print every grouped line, not only labels.")
    detect.add_argument("--output-json", help="Optional JSON output path for candidates.")
    detect.add_argument(
        "--seed-template",
        help="Write a new template JSON with one field per detected label and the page as background.",
    )
    detect.add_argument("--name", default="Untitled Template", help="Template name used with --seed-template.")

    for name, help_text in (
        ("render", "Render one filled document from a template."),
        ("batch", "Render one document per CSV row."),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--template", required=True, help="Path to the template JSON.")
        cmd.add_argument("--csv", dest="csv_path", help="Path to CSV file with values.")
        cmd.add_argument("--field-mappings", help="Path to JSON file mapping field ids to CSV columns.")
        cmd.add_argument("--fixed-values", help="Path to JSON file with fixed values for non-mapped fields.")
        cmd.add_argument("--format", dest="target_format", default="document", choices=TARGET_FORMATS)
        cmd.add_argument("--quality", type=int, default=DEFAULT_QUALITY, help="JPEG quality (1-100).")
        cmd.add_argument("--no-background", action="store_true", help="Render fields on a blank page.")
        cmd.add_argument("--require-background", action="store_true", help="Fail when the background cannot be composed.")
        cmd.add_argument("--fonts-dir", default=str(FONTS_DIR), help="Directory of .ttf/.otf fonts to register.")
        cmd.add_argument("--output", required=True, help="Output file (render) or directory (batch).")

    render = sub.choices["render"]
    render.add_argument("--data-json", help="Path to JSON file with values.")
    render.add_argument("--row", type=int, default=0, help="CSV row index to use.")

    batch = sub.choices["batch"]
    batch.add_argument("--workers", type=int, default=BATCH_MAX_WORKERS, help="Concurrent renders.")
    batch.add_argument("--zip", action="store_true", help="Also write <output>.zip with every artifact.")

    args = parser.parse_args(argv)
    if args.command == "batch" and not args.csv_path:
        parser.error("batch requires --csv")
    if args.command == "render" and args.csv_path and args.data_json:
        parser.error("Use either --csv or --data-json, not both.")
    return args


def _load_json(path: str | None) -> dict | None:
    if not path:
        return None
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _write_json(path: str, payload) -> None:
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    print(f"Wrote JSON: {output_path}")


def cmd_extract(args: argparse.Namespace) -> int:
    extraction = extract_document(Path(args.document), password=args.password)
    needle = args.contains.lower() if args.contains else None

    items: list[dict] = []
    for page in extraction.pages:
        if args.page is not None and page.page_index != args.page:
            continue
        print(f"Page: {page.page_index}  Size: {page.dimensions.width:.2f} x {page.dimensions.height:.2f} points")
        for run in page.runs:
            text = run.text.strip()
            if len(text) < args.min_len or (needle and needle not in text.lower()):
                continue
            items.append({"page": page.page_index, "text": text, "x": run.x, "y": run.y, "width": run.width,
                          "height": run.height, "fontName": run.font_name, "fontSize": run.font_size})
            print(
                f"{len(items):03d} | '{text}' | font={run.font_name} size={run.font_size:.1f} | "
                f"xy=({run.x:.2f},{run.y:.2f}) w={run.width:.2f} h={run.height:.2f}"
            )
            if args.max_items and len(items) >= args.max_items:
                break
        if args.max_items and len(items) >= args.max_items:
            break

    for error in extraction.errors:
        print(f"[WARN] {error}")
    print(f"Matches: {len(items)}")
    if args.output_json:
        _write_json(args.output_json, {"document": args.document, "items": items})
    return 0


def cmd_detect(args: argparse.Namespace) -> int:
    patterns = LabelPatternSet.from_file(args.patterns) if args.patterns else None
    analysis = analyze_document(
        Path(args.document),
        page_index=args.page,
        include_background=bool(args.seed_template),
        detector=FieldCandidateDetector(patterns, args.tolerance, args.height_policy),
        labels_only=not args.all_lines,
    )

    candidates = analysis.candidates
    dims = analysis.dimensions
    print(f"Document: {args.document}")
    print(f"Page: {args.page}  Size: {dims.width:.2f} x {dims.height:.2f} points")
    for idx, candidate in enumerate(candidates, start=1):
        marker = "[LABEL]" if candidate.is_label else "       "
        print(f"{idx:03d} {marker} '{candidate.text}' | xy=({candidate.x:.2f},{candidate.y:.2f}) w={candidate.width:.2f}")
    print(f"Candidates: {len(candidates)}")

    if args.output_json:
        _write_json(args.output_json, {"dimensions": dims.model_dump(), "candidates": [c.to_dict() for c in candidates]})

    if args.seed_template:
        template = new_template(args.name, dims.width, dims.height, background_artifact=analysis.background_image)
        session = TemplateSession(template)
        seeded = session.seed_from_candidates([c for c in candidates if c.is_label])
        output_path = Path(args.seed_template)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(export_template(session.template))
        print(f"[OK] Seeded {len(seeded)} field(s) into template: {output_path}")
    return 0


def _engine(args: argparse.Namespace) -> RenderEngine:
    registry = FontRegistry()
    registered = registry.register_directory(Path(args.fonts_dir))
    if registered:
        print(f"Registered {len(registered)} custom font(s)")
    return RenderEngine(font_resolver=FontResolver(registry))


def _options(args: argparse.Namespace) -> RenderOptions:
    return RenderOptions(
        include_background=not args.no_background,
        target_format=args.target_format,
        quality=args.quality,
        require_background=args.require_background,
    )


def _report(result) -> None:
    for field_id, reason in result.skipped_fields:
        print(f"[WARN] Skipped field '{field_id}': {reason}")
    if result.unfilled_fields:
        print(f"[INFO] Unfilled: {', '.join(result.unfilled_fields)}")


def cmd_render(args: argparse.Namespace) -> int:
    template = import_template(Path(args.template).read_bytes())
    if args.data_json:
        binding = _load_json(args.data_json) or {}
    elif args.csv_path:
        rows = load_csv_rows(Path(args.csv_path))
        if args.row < 0 or args.row >= len(rows):
            raise IndexError(f"Row index {args.row} out of range. CSV has {len(rows)} row(s).")
        binding = merge_row(rows[args.row], _load_json(args.field_mappings), _load_json(args.fixed_values))
    else:
        binding = _load_json(args.fixed_values) or {}

    result = _engine(args).render(template, binding, _options(args))
    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(result.artifact)
    _report(result)
    print(f"[OK] Wrote: {output_path} ({len(result.drawn_fields)} field(s) drawn)")
    return 0 if result.ok else 2


def cmd_batch(args: argparse.Namespace) -> int:
    template = import_template(Path(args.template).read_bytes())
    rows = load_csv_rows(Path(args.csv_path))
    bindings = bindings_from_rows(rows, _load_json(args.field_mappings), _load_json(args.fixed_values))
    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    print(f"Generating {len(bindings)} documents...")
    batch = render_batch(_engine(args), template, bindings, _options(args), max_workers=args.workers)
    for item in batch.items:
        if item.result is None:
            print(f"  [{item.index + 1}/{len(bindings)}] [WARN] failed: {item.error}")
            continue
        output_file = output_dir / artifact_name(item.index, item.result.extension)
        output_file.write_bytes(item.result.artifact)
        print(f"  [{item.index + 1}/{len(bindings)}] {output_file.name}")

    if args.zip:
        zip_path = output_dir.parent / f"{output_dir.name}.zip"
        write_batch_zip(batch, zip_path)
        print(f"Created ZIP archive: {zip_path}")
    print(f"Done! {batch.success_count} succeeded, {batch.failed_count} failed in {output_dir}")
    return 0 if batch.failed_count == 0 else 2


COMMANDS = {
    "extract": cmd_extract,
    "detect": cmd_detect,
    "render": cmd_render,
    "batch": cmd_batch,
}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return COMMANDS[args.command](args)
    except (FormStampError, ValueError, IndexError, OSError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
