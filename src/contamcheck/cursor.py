"""Lock-step walking over the global contaminant/assembly alignment.

Every consumer of the global alignment (index construction, lift-over, both
classification passes) needs the same thing: step through alignment columns
while keeping count of the assembly-space coordinate. :class:`AlignmentCursor`
is the one place that knows how gaps on the assembly side affect that count.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional

from .ambiguity import GAP


@dataclass(frozen=True)
class Column:
    """One alignment column.

    ``assembly_pos`` is the assembly coordinate the column belongs to: the
    number of non-gap assembly symbols in all preceding columns. A column with
    a gap on the assembly side shares the coordinate of the next assembly base.
    """

    consensus: str
    assembly: str
    assembly_pos: int
    index: int


class AlignmentCursor:
    def __init__(self, consensus_aln: str, assembly_aln: str) -> None:
        if len(consensus_aln) != len(assembly_aln):
            raise ValueError("Aligned strings must have equal length")
        self._con = consensus_aln
        self._ass = assembly_aln
        self.column = 0
        self.assembly_pos = 0

    @property
    def exhausted(self) -> bool:
        return self.column >= len(self._con)

    def current(self) -> Column:
        return Column(
            consensus=self._con[self.column],
            assembly=self._ass[self.column],
            assembly_pos=self.assembly_pos,
            index=self.column,
        )

    def advance_column(self) -> Column:
        """Consume one alignment column and return it."""
        if self.exhausted:
            raise IndexError("alignment cursor exhausted")
        col = self.current()
        if col.assembly != GAP:
            self.assembly_pos += 1
        self.column += 1
        return col

    def advance_position(self) -> List[Column]:
        """Consume columns up to and including the next assembly base."""
        consumed: List[Column] = []
        while not self.exhausted:
            col = self.advance_column()
            consumed.append(col)
            if col.assembly != GAP:
                break
        return consumed

    def seek(self, assembly_pos: int) -> None:
        """Move forward to the first column belonging to ``assembly_pos``."""
        while self.assembly_pos < assembly_pos and not self.exhausted:
            self.advance_position()

    def columns_until(self, end: Optional[int]) -> Iterator[Column]:
        """Yield columns while the assembly coordinate is below ``end`` (None: to the end)."""
        while not self.exhausted and (end is None or self.assembly_pos < end):
            yield self.advance_column()


def lift_over(consensus_aln: str, assembly_aln: str, start: int, end: int) -> str:
    """Consensus-side symbols opposite the assembly span ``[start, end)``."""
    cursor = AlignmentCursor(consensus_aln, assembly_aln)
    cursor.seek(start)
    return "".join(col.consensus for col in cursor.columns_until(end) if col.consensus != GAP)
