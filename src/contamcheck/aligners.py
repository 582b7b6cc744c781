"""Adapters around the two aligners the checker consumes.

- Global alignment of contaminant consensus vs assembly consensus uses edlib
  (Myers' bit-vector O(ND) algorithm), made ambiguity-aware by declaring every
  pair of compatible IUPAC codes equal.
- Fragment vs reference window uses Biopython's PairwiseAligner with free end
  gaps on the window side, scored by a substitution matrix over ``ACGTN``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import edlib
import numpy as np
from Bio.Align import PairwiseAligner, substitution_matrices

from .ambiguity import GAP, iupac_equalities
from .errors import AlignmentTooDivergentError, FragmentAlignmentError

logger = logging.getLogger(__name__)

MATRIX_ALPHABET = "ACGTN"

MATCH_SCORE = 1.0
MISMATCH_SCORE = -2.0
DEAMINATION_SCORE = -0.5
OPEN_GAP_SCORE = -3.0
EXTEND_GAP_SCORE = -1.0

_EQUALITIES = iupac_equalities()


@dataclass(frozen=True)
class GlobalAlignment:
    """Gapped contaminant-consensus and assembly strings of equal length."""

    consensus: str
    assembly: str
    distance: int

    def __len__(self) -> int:
        return len(self.consensus)


@dataclass(frozen=True)
class LocalAlignment:
    """Aligned window/read pair trimmed to the read, plus the read's offset in the window."""

    window: str
    read: str
    start: int


def align_globally(contaminant: str, assembly: str, max_distance: int) -> GlobalAlignment:
    """Align the two consensus sequences end to end within ``max_distance`` edits."""
    target = contaminant.upper()
    query = assembly.upper()
    result = edlib.align(
        query,
        target,
        mode="NW",
        task="path",
        k=int(max_distance),
        additionalEqualities=_EQUALITIES,
    )
    if result["editDistance"] == -1:
        raise AlignmentTooDivergentError(max_distance)
    nice = edlib.getNiceAlignment(result, query, target, gapSymbol=GAP)
    return GlobalAlignment(
        consensus=nice["target_aligned"],
        assembly=nice["query_aligned"],
        distance=int(result["editDistance"]),
    )


def normalize_sequence(seq: str) -> str:
    """Upper-case and map everything outside ACGT to N."""
    return "".join(ch if ch in "ACGT" else "N" for ch in seq.upper())


def default_substitution_matrix(*, adna: bool = False) -> substitution_matrices.Array:
    """Substitution scores indexed ``[reference, read]``.

    In ancient-DNA mode reference C / read T and reference G / read A are
    penalised less, since those are the expected deamination artifacts.
    """
    data = np.full((5, 5), MISMATCH_SCORE)
    np.fill_diagonal(data, MATCH_SCORE)
    data[4, :] = 0.0
    data[:, 4] = 0.0
    if adna:
        idx = {ch: i for i, ch in enumerate(MATRIX_ALPHABET)}
        data[idx["C"], idx["T"]] = DEAMINATION_SCORE
        data[idx["G"], idx["A"]] = DEAMINATION_SCORE
    return substitution_matrices.Array(alphabet=MATRIX_ALPHABET, dims=2, data=data)


def _restore_symbols(aligned: str, original: str) -> str:
    symbols = iter(original)
    return "".join(ch if ch == GAP else next(symbols) for ch in aligned)


class LocalAligner:
    """Fragment-vs-window aligner with free end gaps on the window side."""

    def __init__(
        self,
        substitution_matrix: Optional[substitution_matrices.Array] = None,
        *,
        adna: bool = False,
        open_gap_score: float = OPEN_GAP_SCORE,
        extend_gap_score: float = EXTEND_GAP_SCORE,
    ) -> None:
        if substitution_matrix is None:
            substitution_matrix = default_substitution_matrix(adna=adna)
        aligner = PairwiseAligner()
        aligner.mode = "global"
        aligner.substitution_matrix = substitution_matrix
        aligner.open_gap_score = open_gap_score
        aligner.extend_gap_score = extend_gap_score
        # window overhang on either side is free; read overhang is not
        aligner.end_deletion_score = 0.0
        self._aligner = aligner

    def align(self, window: str, read: str) -> LocalAlignment:
        if not window:
            raise FragmentAlignmentError("empty reference window")
        if not read:
            raise FragmentAlignmentError("empty read")

        try:
            alignment = next(iter(self._aligner.align(normalize_sequence(window), normalize_sequence(read))))
        except (ValueError, OverflowError, StopIteration) as e:
            raise FragmentAlignmentError(f"aligner failed: {e}") from e

        window_aln = str(alignment[0])
        read_aln = str(alignment[1])

        first = next(i for i, ch in enumerate(read_aln) if ch != GAP)
        last = max(i for i, ch in enumerate(read_aln) if ch != GAP)
        start = len(window_aln[:first].replace(GAP, ""))

        return LocalAlignment(
            window=window_aln[first : last + 1],
            read=_restore_symbols(read_aln[first : last + 1], read),
            start=start,
        )
