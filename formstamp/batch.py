"""Batch rendering of many bindings against one template."""
from __future__ import annotations

import csv
import io
import logging
import zipfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

from .cancellation import CancellationToken
from .config import BATCH_MAX_WORKERS
from .errors import FormStampError, RenderCancelledError
from .models import RenderOptions, Template
from .renderer import RenderEngine, RenderResult

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    index: int
    result: RenderResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None


@dataclass
class BatchResult:
    items: list[BatchItem] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for item in self.items if item.ok)

    @property
    def failed_count(self) -> int:
        return len(self.items) - self.success_count


def load_csv_rows(source: str | Path | bytes) -> list[dict[str, str]]:
    if isinstance(source, (bytes, bytearray)):
        rows = list(csv.DictReader(io.StringIO(bytes(source).decode("utf-8-sig"))))
    else:
        with Path(source).open("r", newline="", encoding="utf-8-sig") as f:
            rows = list(csv.DictReader(f))
    if not rows:
        raise ValueError("CSV has no data rows.")
    return rows


def merge_row(
    row: Mapping[str, str],
    field_mappings: Mapping[str, str] | None,
    fixed_values: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Binding for one CSV row.

    Fixed values apply first; mapped columns (field id -> column name)
    override them when the column is present.
    """
    binding: dict[str, Any] = dict(fixed_values or {})
    if field_mappings:
        for field_id, column in field_mappings.items():
            if column and column in row:
                binding[field_id] = row[column]
    elif not fixed_values:
        binding.update(row)
    return binding


def bindings_from_rows(
    rows: Iterable[Mapping[str, str]],
    field_mappings: Mapping[str, str] | None = None,
    fixed_values: Mapping[str, Any] | None = None,
) -> list[dict[str, Any]]:
    return [merge_row(row, field_mappings, fixed_values) for row in rows]


def render_batch(
    engine: RenderEngine,
    template: Template,
    bindings: Sequence[Mapping[str, Any]],
    options: RenderOptions | None = None,
    max_workers: int = BATCH_MAX_WORKERS,
    cancel_token: CancellationToken | None = None,
    progress_callback: Callable[[float, str], None] | None = None,
) -> BatchResult:
    """Render every binding; a failing item never stops the others.

    Items keep input order. Cancellation stops items that have not started
    yet; they are reported as failed.
    """
    if max_workers < 1:
        raise ValueError(f"max_workers must be >= 1, got {max_workers}")
    total = len(bindings)
    items = [BatchItem(index=i) for i in range(total)]
    done = 0

    def work(index: int) -> None:
        item = items[index]
        try:
            item.result = engine.render(template, bindings[index], options, cancel_token=cancel_token)
        except RenderCancelledError as exc:
            item.error = str(exc)
        except FormStampError as exc:
            logger.warning("Batch item %d failed: %s", index, exc)
            item.error = str(exc)
        except Exception as exc:
            logger.exception("Batch item %d failed unexpectedly", index)
            item.error = str(exc)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        for _ in executor.map(work, range(total)):
            done += 1
            if progress_callback:
                progress_callback(done / total * 100.0, f"Rendered {done}/{total}")

    result = BatchResult(items=items)
    logger.info("Batch finished: %d succeeded, %d failed", result.success_count, result.failed_count)
    return result


def artifact_name(index: int, extension: str, prefix: str = "document") -> str:
    return f"{prefix}_{index + 1:04d}{extension}"


def write_batch_zip(batch: BatchResult, target: str | Path | io.BytesIO | None = None, prefix: str = "document") -> bytes:
    """Package successful artifacts into a ZIP archive; returns the archive bytes."""
    packet = io.BytesIO()
    with zipfile.ZipFile(packet, "w", zipfile.ZIP_DEFLATED) as zipf:
        for item in batch.items:
            if item.result is None:
                continue
            zipf.writestr(artifact_name(item.index, item.result.extension, prefix), item.result.artifact)
    data = packet.getvalue()
    if isinstance(target, io.BytesIO):
        target.write(data)
    elif target is not None:
        Path(target).parent.mkdir(parents=True, exist_ok=True)
        Path(target).write_bytes(data)
    return data
