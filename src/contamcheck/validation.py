from __future__ import annotations

import logging
import re
from typing import Optional, Tuple

from .ambiguity import first_invalid_symbol
from .errors import SequenceSanityError

logger = logging.getLogger(__name__)


_SPAN_RE = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")


def check_sequence(name: str, seq: str) -> None:
    """Ensure a consensus holds only IUPAC nucleotide codes; raise SequenceSanityError otherwise."""
    if not seq:
        raise ValueError(f"Sequence '{name}' is empty")
    bad = first_invalid_symbol(seq)
    if bad >= 0:
        raise SequenceSanityError(name, seq[bad], bad)


def parse_span(text: str) -> Tuple[int, Optional[int]]:
    """Parse a 1-based inclusive ``M-N`` span into a 0-based half-open ``(from, to)``."""
    m = _SPAN_RE.match(text)
    if m is None:
        raise ValueError(f"Invalid span {text!r}; expected M-N, e.g. 100-2000")
    first, last = int(m.group(1)), int(m.group(2))
    if last < max(first, 1):
        raise ValueError(f"Invalid span {text!r}; end must not precede start")
    return max(first - 1, 0), last
