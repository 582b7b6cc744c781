"""Two-pass fragment classification.

Pass 1 walks every fragment and upgrades weakly diagnostic positions to
"effective" where a fragment shows contaminant-only evidence. After all weak
positions left over are pruned, Pass 2 walks every fragment again and votes it
into a class, once over strongly diagnostic positions only and once over all
remaining positions. Split fragments (back half, then front half) are merged
before they are counted.

The diagnostic index is the only state shared between fragments; it is built
once by :func:`run_check` and handed explicitly to both passes.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from tqdm import tqdm

from .aligners import GlobalAlignment, LocalAligner, align_globally
from .ambiguity import GAP, is_consistent, is_weakly_diagnostic
from .config import CheckConfig
from .cursor import AlignmentCursor
from .diagnostic_index import DiagnosticIndex
from .errors import TooFewDiagnosticPositionsError
from .models import (
    Assembly,
    ClassTally,
    Fragment,
    FragmentClass,
    FragmentResult,
    SegmentRole,
    Strength,
    Verdict,
)
from .realign import FragmentRealigner, RealignedFragment
from .stats import build_tally
from .validation import check_sequence

logger = logging.getLogger(__name__)


_U = FragmentClass.UNKNOWN
_CL = FragmentClass.CLEAN
_CO = FragmentClass.CONTAMINANT
_CF = FragmentClass.CONFLICTING
_NS = FragmentClass.NONSENSICAL

# merge(a, b): nonsensical absorbs everything, unknown is absorbed by anything,
# otherwise equal stays equal and different becomes conflicting.
_MERGE_TABLE: Tuple[Tuple[FragmentClass, ...], ...] = (
    #  b: U    CL   CO   CF   NS
    (_U, _CL, _CO, _CF, _NS),  # a = U
    (_CL, _CL, _CF, _CF, _NS),  # a = CL
    (_CO, _CF, _CO, _CF, _NS),  # a = CO
    (_CF, _CF, _CF, _CF, _NS),  # a = CF
    (_NS, _NS, _NS, _NS, _NS),  # a = NS
)


def merge_class(a: FragmentClass, b: FragmentClass) -> FragmentClass:
    return _MERGE_TABLE[a][b]


def evidence_class(maybe_clean: bool, maybe_dirt: bool) -> FragmentClass:
    """Class suggested by a single diagnostic position."""
    if maybe_clean and maybe_dirt:
        return FragmentClass.UNKNOWN
    if maybe_clean:
        return FragmentClass.CLEAN
    if maybe_dirt:
        return FragmentClass.CONTAMINANT
    return FragmentClass.NONSENSICAL


def update_verdict(verdict: Verdict, maybe_clean: bool, maybe_dirt: bool) -> Verdict:
    """Fold one position's evidence into a running verdict."""
    return Verdict(
        cls=merge_class(verdict.cls, evidence_class(maybe_clean, maybe_dirt)),
        votes=verdict.votes + (1 if maybe_clean != maybe_dirt else 0),
    )


def merge_verdicts(a: Verdict, b: Verdict) -> Verdict:
    return Verdict(cls=merge_class(a.cls, b.cls), votes=a.votes + b.votes)


@dataclass(frozen=True)
class Observation:
    """What a fragment shows at one column where consensus and assembly differ.

    ``ref_call`` is the fragment's symbol as aligned to the contaminant
    consensus, ``ass_call`` its symbol as aligned to the assembly.
    """

    position: int
    consensus: str
    assembly: str
    ref_call: str
    ass_call: str

    @property
    def agrees(self) -> bool:
        return self.ref_call.upper() == self.ass_call.upper()


def iter_observations(
    alignment: GlobalAlignment,
    fragment: Fragment,
    realigned: RealignedFragment,
) -> Iterator[Observation]:
    """Walk the global alignment over the fragment's span alongside its realignment."""
    cursor = AlignmentCursor(alignment.consensus, alignment.assembly)
    cursor.seek(fragment.start)
    window_offset = 0
    for col in cursor.columns_until(fragment.end + 1):
        if is_weakly_diagnostic(col.consensus, col.assembly):
            ref_call = realigned.call_at(window_offset)
            ass_call = fragment.call_at(col.assembly_pos)
            if ref_call is not None and ass_call is not None:
                yield Observation(
                    position=col.assembly_pos,
                    consensus=col.consensus,
                    assembly=col.assembly,
                    ref_call=ref_call,
                    ass_call=ass_call,
                )
        if col.consensus != GAP:
            window_offset += 1


def _progress(fragments: Sequence[Fragment], enabled: bool, desc: str) -> Iterable[Tuple[int, Fragment]]:
    it: Iterable[Tuple[int, Fragment]] = enumerate(fragments)
    if enabled:
        it = tqdm(it, total=len(fragments), unit="fragment", desc=desc)
    return it


def discover_effective_positions(
    index: DiagnosticIndex,
    alignment: GlobalAlignment,
    fragments: Sequence[Fragment],
    realigner: FragmentRealigner,
    *,
    adna: bool = False,
    anomalies: Optional[Counter] = None,
    verbosity: int = 0,
    progress: bool = False,
) -> int:
    """Pass 1: upgrade weak positions with contaminant-only evidence to effective.

    Mutates ``index`` in place and returns the number of upgrades. A position
    is upgraded at most once, by the first fragment that qualifies.
    """
    if anomalies is None:
        anomalies = Counter()
    upgrades = 0

    for key, fragment in _progress(fragments, progress, "Pass 1"):
        overlap = index.overlapping(fragment.start, fragment.end)
        if verbosity >= 3:
            logger.debug(
                "%s: %d potentially diagnostic positions; range: %d..%d",
                fragment.label,
                len(overlap),
                fragment.start,
                fragment.end,
            )
        if not overlap:
            continue

        realigned = realigner.realign(key, fragment)
        if realigned is None:
            anomalies["alignment_failures"] += 1
            continue

        for obs in iter_observations(alignment, fragment, realigned):
            dp = index.get(obs.position)
            if dp is None:
                if index.covers(obs.position):
                    logger.warning("Diagnostic site not found: %d", obs.position)
                    anomalies["missing_positions"] += 1
                continue
            if not obs.agrees:
                if verbosity >= 4:
                    logger.debug("%s: position %d in disagreement", fragment.label, obs.position)
                continue

            maybe_clean = is_consistent(adna, dp.assembly, obs.ass_call)
            maybe_dirt = is_consistent(adna, dp.consensus, obs.ref_call)
            if not maybe_clean and maybe_dirt and dp.upgrade(obs.ref_call):
                upgrades += 1
                if verbosity >= 4:
                    logger.debug(
                        "%s: position %d possible contaminant, upgraded to effective",
                        fragment.label,
                        obs.position,
                    )

    return upgrades


def classify_fragment(
    index: DiagnosticIndex,
    alignment: GlobalAlignment,
    fragment: Fragment,
    realigned: Optional[RealignedFragment],
    *,
    adna: bool = False,
    min_diagnostic_positions: int = 1,
    verbosity: int = 0,
) -> FragmentResult:
    """Pass 2 for one fragment: vote it into a class using the pruned index.

    Two verdicts are kept: ``strong`` counts strongly diagnostic positions only;
    ``combined`` counts every remaining position and treats evidence consistent
    with both sources as a clean vote.
    """
    overlap = index.overlapping(fragment.start, fragment.end)
    strong = Verdict()
    combined = Verdict()

    if len(overlap) < min_diagnostic_positions:
        if verbosity >= 3:
            logger.debug("%s: no diagnostic positions", fragment.label)
    elif realigned is not None:
        if verbosity >= 4:
            logger.debug("%s: %s", fragment.label, index.describe(overlap))
        for obs in iter_observations(alignment, fragment, realigned):
            dp = index.get(obs.position)
            if dp is None or not obs.agrees:
                continue
            maybe_clean = is_consistent(adna, dp.assembly, obs.ass_call)
            maybe_dirt = is_consistent(adna, dp.consensus, obs.ref_call)
            if verbosity >= 4:
                logger.debug(
                    "%s: position %d %s %s(%s)/%s: %sconsistent/%sconsistent",
                    fragment.label,
                    obs.position,
                    dp.strength.name.lower(),
                    dp.consensus,
                    obs.ref_call,
                    dp.assembly,
                    "" if maybe_dirt else "in",
                    "" if maybe_clean else "in",
                )
            combined = update_verdict(combined, maybe_clean, maybe_dirt and not maybe_clean)
            if dp.strength is Strength.STRONG:
                strong = update_verdict(strong, maybe_clean, maybe_dirt)

    return FragmentResult(
        fragment_id=fragment.fragment_id,
        role=fragment.role,
        start=fragment.start,
        end=fragment.end,
        overlap=len(overlap),
        aligned=realigned is not None,
        strong=strong,
        combined=combined,
    )


class FragmentTally:
    """Counts final verdicts per class, merging back and front halves first.

    A back half is held until the front half with the same identifier arrives;
    the pair then counts once. A front half without its back is reported and
    counted on its own evidence.
    """

    def __init__(self, anomalies: Optional[Counter] = None) -> None:
        self.strong: Counter = Counter()
        self.combined: Counter = Counter()
        self.anomalies: Counter = anomalies if anomalies is not None else Counter()
        self._backs: Dict[str, Tuple[Verdict, Verdict]] = {}

    def add(self, result: FragmentResult) -> Optional[Tuple[Verdict, Verdict]]:
        """Record one result; returns the counted (strong, combined) verdicts, if counted now."""
        strong, combined = result.strong, result.combined

        if result.role is SegmentRole.BACK:
            self._backs[result.fragment_id] = (strong, combined)
            return None

        if result.role is SegmentRole.FRONT:
            back = self._backs.pop(result.fragment_id, None)
            if back is None:
                # TODO: confirm with domain experts whether an orphaned front should count at all
                logger.error("%s/f is missing its back.", result.fragment_id)
                self.anomalies["fronts_missing_back"] += 1
            else:
                strong = merge_verdicts(strong, back[0])
                combined = merge_verdicts(combined, back[1])

        logger.debug("%s is %s (%d votes)", result.fragment_id, strong.cls.label, strong.votes)
        logger.debug("%s is %s (%d votes)", result.fragment_id, combined.cls.label, combined.votes)
        self.strong[strong.cls] += 1
        self.combined[combined.cls] += 1
        return strong, combined

    def finish(self) -> List[str]:
        """Report back halves whose front never arrived; they are not counted."""
        orphans = sorted(self._backs)
        for fragment_id in orphans:
            logger.warning("%s/b is missing its front.", fragment_id)
        self.anomalies["backs_missing_front"] += len(orphans)
        self._backs.clear()
        return orphans


def classify_fragments(
    index: DiagnosticIndex,
    alignment: GlobalAlignment,
    fragments: Sequence[Fragment],
    realigner: FragmentRealigner,
    *,
    adna: bool = False,
    min_diagnostic_positions: int = 1,
    confidence: float = 0.95,
    anomalies: Optional[Counter] = None,
    verbosity: int = 0,
    progress: bool = False,
) -> Tuple[List[FragmentResult], ClassTally, ClassTally]:
    """Pass 2 over all fragments; returns per-fragment results and both tallies."""
    tally = FragmentTally(anomalies)
    results: List[FragmentResult] = []

    for key, fragment in _progress(fragments, progress, "Pass 2"):
        result = classify_fragment(
            index,
            alignment,
            fragment,
            realigner.get(key),
            adna=adna,
            min_diagnostic_positions=min_diagnostic_positions,
            verbosity=verbosity,
        )
        results.append(result)
        tally.add(result)

    tally.finish()
    return (
        results,
        build_tally(tally.strong, confidence=confidence),
        build_tally(tally.combined, confidence=confidence),
    )


@dataclass
class CheckResult:
    """Everything one contamination check produced."""

    name: str
    distance: int
    differences: int
    strong_positions: int
    effective_positions: int
    transversions: int
    upgrades: int
    index: DiagnosticIndex
    fragments: List[FragmentResult]
    strong: ClassTally
    combined: ClassTally
    anomalies: Dict[str, int]


def run_check(reference: str, assembly: Assembly, config: CheckConfig) -> CheckResult:
    """Check one assembly for contamination by the organism ``reference`` represents.

    Raises
    ------
    SequenceSanityError
        Either consensus contains a non-IUPAC symbol.
    AlignmentTooDivergentError
        The consensus sequences differ by more than the allowed edit distance.
    TooFewDiagnosticPositionsError
        Fewer strongly diagnostic positions than the safety floor, unless forced.
    """
    check_sequence("reference", reference)
    check_sequence(assembly.name, assembly.consensus)

    max_distance = config.resolve_max_distance(len(reference), len(assembly.consensus))
    alignment = align_globally(reference, assembly.consensus, max_distance)
    logger.info("%d alignment distance between reference and assembly.", alignment.distance)
    if config.verbosity >= 6:
        logger.debug("Global alignment:\n%s\n%s", alignment.consensus, alignment.assembly)

    index = DiagnosticIndex.from_alignment(
        alignment.consensus, alignment.assembly, config.span_from, config.span_to
    )
    differences = len(index)
    strong_positions = index.count(Strength.STRONG)
    logger.info(
        "%d diagnostic positions, %d of which are strongly diagnostic.", differences, strong_positions
    )
    if config.verbosity >= 3:
        logger.debug("Diagnostic positions: %s", index.describe())

    if strong_positions < config.min_strong_positions:
        if not config.force:
            raise TooFewDiagnosticPositionsError(strong_positions, config.min_strong_positions)
        logger.warning(
            "Only %d strongly diagnostic positions found; continuing because of --force.",
            strong_positions,
        )

    aligner = LocalAligner(assembly.substitution_matrix, adna=config.adna)
    realigner = FragmentRealigner(alignment, aligner, verbosity=config.verbosity)
    anomalies: Counter = Counter()

    logger.info("Pass one: finding actually diagnostic positions.")
    upgrades = discover_effective_positions(
        index,
        alignment,
        assembly.fragments,
        realigner,
        adna=config.adna,
        anomalies=anomalies,
        verbosity=config.verbosity,
        progress=config.progress,
    )
    pruned = index.prune_weak()
    logger.info("%d weak positions upgraded, %d pruned.", upgrades, pruned)

    if config.transversions_only:
        dropped = index.retain_transversions()
        logger.info("Transversions only: dropped %d diagnostic positions.", dropped)

    transversions = index.count_transversions()
    logger.info(
        "%d effectively diagnostic positions, %d of which are transversions.", len(index), transversions
    )
    if config.verbosity >= 3:
        logger.debug("Effective positions: %s", index.describe())

    logger.info("Pass two: classifying fragments.")
    results, strong, combined = classify_fragments(
        index,
        alignment,
        assembly.fragments,
        realigner,
        adna=config.adna,
        min_diagnostic_positions=config.min_diagnostic_positions,
        confidence=config.confidence,
        anomalies=anomalies,
        verbosity=config.verbosity,
        progress=config.progress,
    )
    realigner.clear()

    return CheckResult(
        name=assembly.name,
        distance=alignment.distance,
        differences=differences,
        strong_positions=strong_positions,
        effective_positions=len(index),
        transversions=transversions,
        upgrades=upgrades,
        index=index,
        fragments=results,
        strong=strong,
        combined=combined,
        anomalies=dict(anomalies),
    )
