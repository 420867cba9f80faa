"""Field candidate detection from extracted text runs.

Runs are grouped into logical lines, then each line is classified as a
probable field label when its text matches one of a configurable set of
case-insensitive patterns. Output stays in Source space.
"""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterable, Sequence

from .config import DEFAULT_LINE_TOLERANCE, LABEL_PATTERNS_FILE
from .models import FieldCandidate, TextRun

logger = logging.getLogger(__name__)

HEIGHT_POLICIES = ("max", "first")


class LabelPatternSet:
    """Ordered, case-insensitive label patterns supplied as data."""

    def __init__(self, patterns: Iterable[str]):
        self.patterns: tuple[str, ...] = tuple(patterns)
        try:
            self._compiled = [re.compile(p, re.IGNORECASE) for p in self.patterns]
        except re.error as exc:
            raise ValueError(f"Invalid label pattern: {exc}") from exc

    @classmethod
    def from_file(cls, path: str | Path) -> LabelPatternSet:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        patterns = payload.get("patterns") if isinstance(payload, dict) else payload
        if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
            raise ValueError(f"{path}: expected a list of pattern strings")
        return cls(patterns)

    @classmethod
    def default(cls) -> LabelPatternSet:
        return cls.from_file(LABEL_PATTERNS_FILE)

    def matches(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self._compiled)

    def __len__(self) -> int:
        return len(self.patterns)


class FieldCandidateDetector:
    def __init__(
        self,
        patterns: LabelPatternSet | None = None,
        line_tolerance: float = DEFAULT_LINE_TOLERANCE,
        height_policy: str = "max",
    ):
        if line_tolerance < 0:
            raise ValueError(f"line_tolerance must be >= 0, got {line_tolerance}")
        if height_policy not in HEIGHT_POLICIES:
            raise ValueError(f"height_policy must be one of {HEIGHT_POLICIES}, got {height_policy!r}")
        self.patterns = patterns if patterns is not None else LabelPatternSet.default()
        self.line_tolerance = line_tolerance
        self.height_policy = height_policy

    def group_lines(self, runs: Sequence[TextRun]) -> list[FieldCandidate]:
        """Merge runs whose Y-centers lie within tolerance of the group's first run.

        Groups keep first-seen order; runs inside a group are ordered by X with
        ties resolved by extraction order.
        """
        processed: set[int] = set()
        lines: list[FieldCandidate] = []

        for index, first in enumerate(runs):
            if index in processed:
                continue
            processed.add(index)
            group = [first]
            for other_index in range(index + 1, len(runs)):
                if other_index in processed:
                    continue
                other = runs[other_index]
                if abs(other.center_y - first.center_y) <= self.line_tolerance:
                    group.append(other)
                    processed.add(other_index)

            lines.append(self._merge(group))

        return lines

    def _merge(self, group: list[TextRun]) -> FieldCandidate:
        first = group[0]
        ordered = sorted(group, key=lambda run: run.x)
        min_x = min(run.x for run in group)
        max_x = max(run.x + run.width for run in group)
        avg_y = sum(run.y for run in group) / len(group)
        if self.height_policy == "first":
            height = first.height
        else:
            height = max(run.height for run in group)
        return FieldCandidate(
            text=" ".join(run.text for run in ordered),
            x=min_x,
            y=avg_y,
            width=max_x - min_x,
            height=height,
            font_name=first.font_name,
            font_size=first.font_size,
        )

    def classify(self, lines: Iterable[FieldCandidate]) -> list[FieldCandidate]:
        return [
            FieldCandidate(
                text=line.text,
                x=line.x,
                y=line.y,
                width=line.width,
                height=line.height,
                font_name=line.font_name,
                font_size=line.font_size,
                is_label=self.patterns.matches(line.text),
            )
            for line in lines
        ]

    def detect(self, runs: Sequence[TextRun]) -> list[FieldCandidate]:
        """All grouped lines, each flagged with ``is_label``."""
        return self.classify(self.group_lines(runs))

    def detect_fields(self, runs: Sequence[TextRun]) -> list[FieldCandidate]:
        """Only the lines that look like field labels."""
        candidates = [c for c in self.detect(runs) if c.is_label]
        logger.info("Detected %d label candidate(s) from %d run(s)", len(candidates), len(runs))
        return candidates
