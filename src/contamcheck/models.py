from __future__ import annotations

import enum
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Dict, List, Mapping, Optional

from .ambiguity import is_transversion, reverse_complement


class Strength(enum.IntEnum):
    """Strength tier of a diagnostic position (ordered weak < effective < strong)."""

    WEAK = 0
    EFFECTIVE = 1
    STRONG = 2

    @property
    def code(self) -> str:
        return "wes"[self.value]


class FragmentClass(enum.IntEnum):
    """Verdict for one fragment."""

    UNKNOWN = 0
    CLEAN = 1
    CONTAMINANT = 2
    CONFLICTING = 3
    NONSENSICAL = 4

    @property
    def label(self) -> str:
        return _CLASS_LABELS[self]


_CLASS_LABELS = {
    FragmentClass.UNKNOWN: "unclassified",
    FragmentClass.CLEAN: "clean",
    FragmentClass.CONTAMINANT: "polluting",
    FragmentClass.CONFLICTING: "conflicting",
    FragmentClass.NONSENSICAL: "nonsensical",
}


class SegmentRole(enum.Enum):
    """Whether a fragment record is a whole read or one half of a split read."""

    WHOLE = "a"
    BACK = "b"
    FRONT = "f"


@dataclass
class DiagnosticPosition:
    """A position where contaminant consensus and assembly differ.

    Keyed (in :class:`~contamcheck.diagnostic_index.DiagnosticIndex`) by the
    0-based coordinate in assembly space. Mutable: Pass 1 may upgrade a weak
    position to effective exactly once, recording the contaminant base seen.
    """

    consensus: str
    assembly: str
    strength: Strength
    contaminant: Optional[str] = None

    @property
    def is_transversion(self) -> bool:
        # an effective position is judged by the contaminant base observed in Pass 1,
        # not by the ambiguity code in the contaminant consensus
        return is_transversion(self.contaminant or self.consensus, self.assembly)

    def upgrade(self, contaminant_base: str) -> bool:
        """Upgrade a weak position to effective; returns False if it was not weak."""
        if self.strength is not Strength.WEAK:
            return False
        self.strength = Strength.EFFECTIVE
        self.contaminant = contaminant_base
        return True

    def describe(self, pos: int, *, with_strength: bool = True) -> str:
        extra = f"({self.contaminant})" if self.strength is Strength.EFFECTIVE else ""
        tag = self.strength.code if with_strength else ""
        return f"<{pos}{tag}:{self.consensus}{extra},{self.assembly}>"


@dataclass(frozen=True)
class Fragment:
    """One aligned read (or half of a split read) from the assembly.

    ``calls`` holds one symbol per assembly coordinate in ``[start, end]``
    (``-`` for a deletion). ``insertions`` maps an offset into ``calls`` to
    bases inserted after that call; offset -1 holds bases before the first call.
    """

    fragment_id: str
    role: SegmentRole
    start: int
    end: int
    calls: str
    insertions: Mapping[int, str] = field(default_factory=dict)

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def call_at(self, pos: int) -> Optional[str]:
        off = pos - self.start
        if 0 <= off < len(self.calls):
            return self.calls[off]
        return None

    def read_sequence(self) -> str:
        """Ungapped read, insertions included."""
        parts = [self.insertions.get(-1, "")]
        for off, nt in enumerate(self.calls):
            if nt != "-":
                parts.append(nt)
            ins = self.insertions.get(off)
            if ins:
                parts.append(ins)
        return "".join(parts)

    @property
    def label(self) -> str:
        return f"{self.fragment_id}/{self.role.value}"


@dataclass(frozen=True)
class Verdict:
    """A fragment class together with the number of discriminating positions."""

    cls: FragmentClass = FragmentClass.UNKNOWN
    votes: int = 0


@dataclass(frozen=True)
class FragmentResult:
    fragment_id: str
    role: SegmentRole
    start: int
    end: int
    overlap: int
    aligned: bool
    strong: Verdict
    combined: Verdict


@dataclass(frozen=True)
class ContaminationEstimate:
    """Contamination rate in percent with a Wilson score interval."""

    lower: float
    estimate: float
    upper: float
    contaminant: int
    total: int


@dataclass(frozen=True)
class ClassTally:
    counts: Dict[FragmentClass, int]
    estimate: Optional[ContaminationEstimate]

    def count(self, cls: FragmentClass) -> int:
        return int(self.counts.get(cls, 0))


@dataclass(frozen=True)
class Reference:
    """Contaminant consensus sequence."""

    name: str
    sequence: str
    description: str = ""

    @cached_property
    def reverse_complement(self) -> str:
        return reverse_complement(self.sequence)


@dataclass(frozen=True)
class Assembly:
    """In-memory assembly: consensus, fragments in file order, optional scoring matrix."""

    name: str
    consensus: str
    fragments: List[Fragment]
    substitution_matrix: Optional[Any] = None
