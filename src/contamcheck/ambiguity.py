"""IUPAC ambiguity codes and the consistency predicates built on them.

Each symbol maps to a 4-bit set over {A, C, G, T}. Two symbols are compatible
when their sets intersect; ``N`` is compatible with everything and the gap
symbol with nothing.
"""

from __future__ import annotations

import itertools
from typing import Dict, List, Tuple

GAP = "-"

_A, _C, _G, _T = 1, 2, 4, 8

_BITS: Dict[str, int] = {
    "A": _A,
    "C": _C,
    "G": _G,
    "T": _T,
    "U": _T,
    "R": _A | _G,
    "Y": _C | _T,
    "S": _C | _G,
    "W": _A | _T,
    "K": _G | _T,
    "M": _A | _C,
    "B": _C | _G | _T,
    "D": _A | _G | _T,
    "H": _A | _C | _T,
    "V": _A | _C | _G,
    "N": _A | _C | _G | _T,
}

IUPAC_SYMBOLS = "ACGTBDHVMKYRSWUN"

# G and C are read as the ambiguity codes covering their deamination products
_DEAMINATED = {"G": "R", "C": "Y", "g": "r", "c": "y"}

_COMPLEMENT = str.maketrans(
    "ACGTURYSWKMBDHVNacgturyswkmbdhvn-",
    "TGCAAYRSWMKVHDBNtgcaayrswmkvhdbn-",
)


def bitmask(symbol: str) -> int:
    """Return the base set of a symbol; unknown symbols and gaps give 0."""
    return _BITS.get(symbol.upper(), 0)


def compatible(a: str, b: str) -> bool:
    return (bitmask(a) & bitmask(b)) != 0


def is_strongly_diagnostic(a: str, b: str) -> bool:
    # N overlaps everything, so it can never be strongly diagnostic
    return a != GAP and b != GAP and not compatible(a, b)


def is_weakly_diagnostic(a: str, b: str) -> bool:
    return a != GAP and b != GAP and a.upper() != b.upper()


def is_transversion(a: str, b: str) -> bool:
    u = a.upper()
    v = b.upper()
    if u == "A":
        return v != "G"
    if u == "C":
        return v not in ("T", "U")
    if u == "G":
        return v != "A"
    if u in ("T", "U"):
        return v != "C"
    return False


def is_consistent(adna: bool, x: str, y: str) -> bool:
    """Could an observed ``y`` have come from a reference base ``x``?

    In ancient-DNA mode a reference G/C also accepts the products of
    deamination (A/T), so damage is not mistaken for a different source.
    """
    if x == GAP or y == GAP:
        return True
    if adna:
        x = _DEAMINATED.get(x, x)
    return (bitmask(x) & bitmask(y)) != 0


def first_invalid_symbol(seq: str) -> int:
    """Offset of the first non-IUPAC symbol in ``seq``, or -1."""
    for i, ch in enumerate(seq):
        if ch.upper() not in _BITS:
            return i
    return -1


def reverse_complement(seq: str) -> str:
    return seq.translate(_COMPLEMENT)[::-1]


def iupac_equalities() -> List[Tuple[str, str]]:
    """Pairs of distinct upper-case symbols that share at least one base."""
    return [
        (a, b)
        for a, b in itertools.combinations(IUPAC_SYMBOLS, 2)
        if _BITS[a] & _BITS[b]
    ]
