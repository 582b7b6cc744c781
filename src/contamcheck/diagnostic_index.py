from __future__ import annotations

import bisect
import logging
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .ambiguity import is_strongly_diagnostic, is_weakly_diagnostic
from .cursor import AlignmentCursor
from .models import DiagnosticPosition, Strength

logger = logging.getLogger(__name__)


class DiagnosticIndex:
    """Diagnostic positions keyed and ordered by assembly coordinate.

    Coordinates live in assembly space (not alignment-column space) so that a
    fragment's ``[start, end]`` span can be looked up with two bisections.
    The index is built once, mutated in place by Pass 1 (weak -> effective),
    pruned, and then read by Pass 2.
    """

    def __init__(self, span_from: int = 0, span_to: Optional[int] = None) -> None:
        self.span_from = span_from
        self.span_to = span_to
        self.positions: List[int] = []  # sorted assembly coordinates
        self._by_pos: Dict[int, DiagnosticPosition] = {}

    @classmethod
    def from_alignment(
        cls,
        consensus_aln: str,
        assembly_aln: str,
        span_from: int = 0,
        span_to: Optional[int] = None,
    ) -> "DiagnosticIndex":
        """Build the index in one linear pass over the global alignment."""
        index = cls(span_from, span_to)
        cursor = AlignmentCursor(consensus_aln, assembly_aln)
        cursor.seek(span_from)
        for col in cursor.columns_until(span_to):
            if not is_weakly_diagnostic(col.consensus, col.assembly):
                continue
            strength = (
                Strength.STRONG
                if is_strongly_diagnostic(col.consensus, col.assembly)
                else Strength.WEAK
            )
            index.add(
                col.assembly_pos,
                DiagnosticPosition(consensus=col.consensus, assembly=col.assembly, strength=strength),
            )
        logger.debug("Built diagnostic index with %d positions", len(index))
        return index

    def add(self, pos: int, dp: DiagnosticPosition) -> None:
        if pos in self._by_pos:
            raise ValueError(f"Duplicate diagnostic position {pos}")
        if self.positions and pos < self.positions[-1]:
            bisect.insort(self.positions, pos)
        else:
            self.positions.append(pos)
        self._by_pos[pos] = dp

    def __len__(self) -> int:
        return len(self.positions)

    def __contains__(self, pos: object) -> bool:
        return pos in self._by_pos

    def __iter__(self) -> Iterator[Tuple[int, DiagnosticPosition]]:
        for pos in self.positions:
            yield pos, self._by_pos[pos]

    def get(self, pos: int) -> Optional[DiagnosticPosition]:
        return self._by_pos.get(pos)

    def covers(self, pos: int) -> bool:
        """True if ``pos`` lies inside the span the index was built for."""
        return pos >= self.span_from and (self.span_to is None or pos < self.span_to)

    def overlapping(self, start: int, end: int) -> List[int]:
        """Positions within the inclusive span ``[start, end]``."""
        left = bisect.bisect_left(self.positions, start)
        right = bisect.bisect_left(self.positions, end + 1)
        return self.positions[left:right]

    def count(self, strength: Strength) -> int:
        return sum(1 for dp in self._by_pos.values() if dp.strength is strength)

    def count_transversions(self) -> int:
        return sum(1 for _, dp in self if dp.is_transversion)

    def _retain(self, keep: Callable[[DiagnosticPosition], bool]) -> int:
        before = len(self.positions)
        self.positions = [p for p in self.positions if keep(self._by_pos[p])]
        self._by_pos = {p: self._by_pos[p] for p in self.positions}
        return before - len(self.positions)

    def prune_weak(self) -> int:
        """Drop every position still weak; returns the number removed."""
        return self._retain(lambda dp: dp.strength is not Strength.WEAK)

    def retain_transversions(self) -> int:
        """Drop positions that are not transversions."""
        return self._retain(lambda dp: dp.is_transversion)

    def describe(self, positions: Optional[List[int]] = None, *, with_strength: bool = True) -> str:
        pos_list = self.positions if positions is None else positions
        return ", ".join(self._by_pos[p].describe(p, with_strength=with_strength) for p in pos_list)
