from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_MIN_STRONG_POSITIONS = 40
DEFAULT_CONFIDENCE = 0.95


@dataclass(frozen=True)
class CheckConfig:
    """Options for one contamination check.

    Attributes
    ----------
    adna:
        Treat fragments as ancient DNA (deamination-aware consistency).
    transversions_only:
        After Pass 1, keep only diagnostic positions that are transversions.
    span_from, span_to:
        Restrict diagnostic positions to ``[span_from, span_to)`` in assembly
        coordinates (0-based). ``span_to=None`` means unbounded.
    min_diagnostic_positions:
        Fragments overlapping fewer diagnostic positions stay unclassified.
    max_distance:
        Maximum edit distance for the global alignment; ``None`` means 10% of
        the longer consensus.
    min_strong_positions:
        Safety floor on the number of strongly diagnostic positions.
    force:
        Proceed even if the safety floor is not met.
    confidence:
        Two-sided confidence level of the Wilson interval.
    verbosity:
        Diagnostic detail only; never changes results.
    progress:
        Show tqdm progress bars during the two passes.
    """

    adna: bool = False
    transversions_only: bool = False
    span_from: int = 0
    span_to: Optional[int] = None
    min_diagnostic_positions: int = 1
    max_distance: Optional[int] = None
    min_strong_positions: int = DEFAULT_MIN_STRONG_POSITIONS
    force: bool = False
    confidence: float = DEFAULT_CONFIDENCE
    verbosity: int = 0
    progress: bool = False

    def __post_init__(self) -> None:
        if self.span_from < 0:
            raise ValueError("span_from must be >= 0")
        if self.span_to is not None and self.span_to <= self.span_from:
            raise ValueError("span_to must be > span_from")
        if self.min_diagnostic_positions < 0:
            raise ValueError("min_diagnostic_positions must be >= 0")
        if self.max_distance is not None and self.max_distance < 0:
            raise ValueError("max_distance must be >= 0")
        if self.min_strong_positions < 0:
            raise ValueError("min_strong_positions must be >= 0")
        if not 0.0 < self.confidence < 1.0:
            raise ValueError("confidence must be in (0, 1)")

    @property
    def has_span(self) -> bool:
        return self.span_from != 0 or self.span_to is not None

    def resolve_max_distance(self, len_a: int, len_b: int) -> int:
        if self.max_distance:
            return int(self.max_distance)
        return max(len_a, len_b) // 10
