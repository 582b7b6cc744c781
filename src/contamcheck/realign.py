from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from .aligners import GlobalAlignment, LocalAligner
from .ambiguity import GAP
from .cursor import lift_over
from .errors import FragmentAlignmentError
from .models import Fragment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RealignedFragment:
    """A fragment aligned to the contaminant-consensus window opposite its span.

    ``start`` is the 0-based offset of the first aligned window symbol within
    the (untrimmed) window. ``window_calls[i]`` is the fragment symbol aligned
    to window symbol ``i`` (``-`` for a deletion in the read), or None where the
    alignment does not cover the window.
    """

    start: int
    ref_aligned: str
    frag_aligned: str
    window_calls: Tuple[Optional[str], ...]

    @classmethod
    def from_alignment(cls, start: int, ref_aligned: str, frag_aligned: str, window_len: int) -> "RealignedFragment":
        calls: List[Optional[str]] = [None] * start
        for r, f in zip(ref_aligned, frag_aligned):
            # read insertions sit between window symbols
            if r != GAP:
                calls.append(f)
        calls.extend([None] * (window_len - len(calls)))
        return cls(start=start, ref_aligned=ref_aligned, frag_aligned=frag_aligned, window_calls=tuple(calls))

    def call_at(self, window_offset: int) -> Optional[str]:
        if 0 <= window_offset < len(self.window_calls):
            return self.window_calls[window_offset]
        return None


class FragmentRealigner:
    """Realigns fragments against the contaminant consensus and caches the result.

    Entries are keyed by the fragment's index in the assembly, created during
    Pass 1 and read back during Pass 2; :meth:`clear` discards them afterwards.
    """

    def __init__(self, alignment: GlobalAlignment, aligner: LocalAligner, *, verbosity: int = 0) -> None:
        self._alignment = alignment
        self._aligner = aligner
        self._verbosity = verbosity
        self._cache: Dict[int, RealignedFragment] = {}
        self._failed: Set[int] = set()

    @property
    def failures(self) -> int:
        return len(self._failed)

    def __len__(self) -> int:
        return len(self._cache)

    def window_for(self, fragment: Fragment) -> str:
        # one extra position on the right so the window always covers the read
        return lift_over(self._alignment.consensus, self._alignment.assembly, fragment.start, fragment.end + 2)

    def realign(self, key: int, fragment: Fragment) -> Optional[RealignedFragment]:
        """Return the cached realignment for ``key``, computing it on first use.

        Returns None if the fragment cannot be aligned; that is logged once and
        never raised.
        """
        cached = self._cache.get(key)
        if cached is not None or key in self._failed:
            return cached

        window = self.window_for(fragment)
        read = fragment.read_sequence()
        try:
            local = self._aligner.align(window, read)
        except FragmentAlignmentError as e:
            logger.warning("%s: cannot realign fragment to reference window: %s", fragment.label, e)
            self._failed.add(key)
            return None

        if self._verbosity >= 5:
            logger.debug(
                "%s\n  raw read: %s\n  lifted:   %s\n  aln.read: %s\n  aln.ref:  %s (+%d)",
                fragment.label,
                read,
                window,
                local.read,
                local.window,
                local.start,
            )

        realigned = RealignedFragment.from_alignment(local.start, local.window, local.read, len(window))
        self._cache[key] = realigned
        return realigned

    def get(self, key: int) -> Optional[RealignedFragment]:
        return self._cache.get(key)

    def clear(self) -> None:
        self._cache.clear()
        self._failed.clear()
