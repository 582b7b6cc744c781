"""Exception taxonomy.

Everything derived from :class:`ContamCheckError` terminates processing of the
current input file. :class:`FragmentAlignmentError` is not one of them: it
is raised per fragment and handled locally by the realignment adapter.
"""

from __future__ import annotations


class ContamCheckError(RuntimeError):
    """Base class for unrecoverable conditions while checking one input."""


class SequenceSanityError(ContamCheckError):
    """Raised when a consensus sequence contains a non-IUPAC symbol."""

    def __init__(self, name: str, symbol: str, offset: int) -> None:
        super().__init__(
            f"Sequence '{name}' contains disallowed symbol {symbol!r} at offset {offset}; "
            "only IUPAC nucleotide codes are permitted (no gaps)."
        )
        self.name = name
        self.symbol = symbol
        self.offset = int(offset)


class AlignmentTooDivergentError(ContamCheckError):
    """Raised when reference and assembly cannot be aligned within the edit-distance bound."""

    def __init__(self, max_distance: int) -> None:
        super().__init__(
            f"Could not align references with up to {max_distance} mismatches. "
            "This is usually a sign of trouble, but if and only if you know what you are "
            f"doing, you can retry with --maxd N and N > {max_distance}."
        )
        self.max_distance = int(max_distance)


class TooFewDiagnosticPositionsError(ContamCheckError):
    """Raised when too few strongly diagnostic positions were found."""

    def __init__(self, found: int, required: int) -> None:
        super().__init__(
            f"Low number ({found}) of strongly diagnostic positions found (need {required}). "
            "Stopping now for your own safety; pass --force to lift this restriction."
        )
        self.found = int(found)
        self.required = int(required)


class FragmentAlignmentError(RuntimeError):
    """Raised when a single fragment cannot be aligned to its reference window."""
