import itertools
from collections import Counter

import pytest

from contamcheck.aligners import LocalAligner, align_globally
from contamcheck.classifier import (
    FragmentTally,
    classify_fragments,
    discover_effective_positions,
    evidence_class,
    merge_class,
    merge_verdicts,
    run_check,
    update_verdict,
)
from contamcheck.config import CheckConfig
from contamcheck.diagnostic_index import DiagnosticIndex
from contamcheck.errors import SequenceSanityError, TooFewDiagnosticPositionsError
from contamcheck.models import (
    Assembly,
    Fragment,
    FragmentClass,
    FragmentResult,
    SegmentRole,
    Strength,
    Verdict,
)
from contamcheck.realign import FragmentRealigner

U = FragmentClass.UNKNOWN
CL = FragmentClass.CLEAN
CO = FragmentClass.CONTAMINANT
CF = FragmentClass.CONFLICTING
NS = FragmentClass.NONSENSICAL


def _whole(fragment_id: str, start: int, calls: str) -> Fragment:
    return Fragment(fragment_id, SegmentRole.WHOLE, start, start + len(calls) - 1, calls)


def _config(**kwargs) -> CheckConfig:
    opts = dict(min_strong_positions=0, max_distance=4)
    opts.update(kwargs)
    return CheckConfig(**opts)


def test_merge_properties() -> None:
    classes = list(FragmentClass)
    for a, b in itertools.product(classes, classes):
        assert merge_class(a, b) == merge_class(b, a)
        assert merge_class(U, a) == a
        assert merge_class(NS, a) == NS
    for a, b, c in itertools.product(classes, classes, classes):
        assert merge_class(merge_class(a, b), c) == merge_class(a, merge_class(b, c))
    assert merge_class(CL, CO) == CF
    assert merge_class(CL, CL) == CL


def test_evidence_and_votes() -> None:
    assert evidence_class(True, True) == U
    assert evidence_class(True, False) == CL
    assert evidence_class(False, True) == CO
    assert evidence_class(False, False) == NS

    v = update_verdict(Verdict(), True, True)
    assert v == Verdict(U, 0)
    v = update_verdict(v, False, True)
    assert v == Verdict(CO, 1)
    v = update_verdict(v, False, False)
    assert v == Verdict(NS, 1)


def test_front_back_pair_counts_once() -> None:
    tally = FragmentTally()
    back = FragmentResult("p", SegmentRole.BACK, 10, 20, 2, True, Verdict(CL, 2), Verdict(CL, 2))
    front = FragmentResult("p", SegmentRole.FRONT, 0, 9, 1, True, Verdict(CO, 1), Verdict(CO, 1))

    assert tally.add(back) is None
    assert sum(tally.strong.values()) == 0
    counted = tally.add(front)
    assert counted == (Verdict(CF, 3), Verdict(CF, 3))
    assert tally.strong == Counter({CF: 1})
    assert tally.combined == Counter({CF: 1})
    assert merge_verdicts(Verdict(CL, 2), Verdict(CO, 1)) == Verdict(CF, 3)


def test_orphans_are_reported() -> None:
    tally = FragmentTally()
    tally.add(FragmentResult("x", SegmentRole.FRONT, 0, 9, 1, True, Verdict(CO, 1), Verdict(CO, 1)))
    tally.add(FragmentResult("y", SegmentRole.BACK, 0, 9, 1, True, Verdict(CL, 1), Verdict(CL, 1)))
    assert tally.finish() == ["y"]
    assert tally.anomalies["fronts_missing_back"] == 1
    assert tally.anomalies["backs_missing_front"] == 1
    # the orphaned front counts on its own evidence, the orphaned back does not
    assert tally.strong == Counter({CO: 1})


def test_single_strong_transition_end_to_end() -> None:
    assembly = Assembly("toy", "ACGCACGT", [_whole("r1", 0, "ACGTACGT")])
    result = run_check("ACGTACGT", assembly, _config())

    assert result.distance == 1
    assert result.strong_positions == 1
    assert result.effective_positions == 1
    assert result.transversions == 0
    assert result.strong.count(CO) == 1
    assert result.combined.count(CO) == 1
    assert result.fragments[0].strong == Verdict(CO, 1)
    assert result.fragments[0].combined == Verdict(CO, 1)
    assert result.strong.estimate is not None
    assert result.strong.estimate.estimate == pytest.approx(100.0)


def test_identical_references_classify_nothing() -> None:
    assembly = Assembly("toy", "ACGTACGT", [_whole("r1", 0, "ACGTACGT"), _whole("r2", 2, "GTAC")])
    result = run_check("ACGTACGT", assembly, _config())
    assert result.differences == 0
    assert result.strong.count(U) == 2
    assert result.combined.count(U) == 2
    assert result.strong.estimate is None


def test_weak_position_upgraded_by_contaminant_evidence() -> None:
    # position 2 is R vs A (weak); r1 shows G there, r2 shows A
    reference = "TTRTTCTT"
    consensus = "TTATTATT"
    fragments = [_whole("r1", 0, "TTGTTCTT"), _whole("r2", 0, "TTATTATT")]
    result = run_check(reference, Assembly("toy", consensus, fragments), _config())

    assert result.upgrades == 1
    assert result.effective_positions == 2
    assert result.index.get(2).strength is Strength.EFFECTIVE
    assert result.index.get(2).contaminant == "G"
    assert result.fragments[0].combined == Verdict(CO, 2)
    assert result.fragments[0].strong == Verdict(CO, 1)
    assert result.fragments[1].combined == Verdict(CL, 2)
    assert result.combined.estimate.estimate == pytest.approx(50.0)


def test_unconfirmed_weak_positions_are_pruned() -> None:
    reference = "TTRTTCTT"
    consensus = "TTATTATT"
    fragments = [_whole("r1", 0, "TTATTATT")]
    result = run_check(reference, Assembly("toy", consensus, fragments), _config())
    assert result.differences == 2
    assert result.upgrades == 0
    assert result.effective_positions == 1
    assert 2 not in result.index


def test_run_check_is_idempotent() -> None:
    fragments = [_whole("r1", 0, "TTGTTCTT"), _whole("r2", 0, "TTATTATT")]
    first = run_check("TTRTTCTT", Assembly("a", "TTATTATT", fragments), _config())
    second = run_check("TTRTTCTT", Assembly("a", "TTATTATT", fragments), _config())
    assert first.fragments == second.fragments
    assert first.strong == second.strong
    assert first.combined == second.combined


def test_min_diagnostic_positions_leaves_fragments_unclassified() -> None:
    assembly = Assembly("toy", "ACGCACGT", [_whole("r1", 0, "ACGTACGT")])
    result = run_check("ACGTACGT", assembly, _config(min_diagnostic_positions=2))
    assert result.strong.count(U) == 1


def test_safety_floor_and_force() -> None:
    assembly = Assembly("toy", "ACGCACGT", [_whole("r1", 0, "ACGTACGT")])
    with pytest.raises(TooFewDiagnosticPositionsError):
        run_check("ACGTACGT", assembly, _config(min_strong_positions=40))
    result = run_check("ACGTACGT", assembly, _config(min_strong_positions=40, force=True))
    assert result.strong_positions == 1


def test_insane_reference_rejected() -> None:
    assembly = Assembly("toy", "ACGTACGT", [])
    with pytest.raises(SequenceSanityError):
        run_check("ACG-ACGT", assembly, _config())


def test_transversions_only_drops_transitions() -> None:
    # C/T at 3 is a transition, A/C at 6 a transversion
    assembly = Assembly("toy", "ACGTACCT", [_whole("r1", 0, "ACGCACAT")])
    result = run_check("ACGCACAT", assembly, _config(transversions_only=True))
    assert result.strong_positions == 2
    assert result.effective_positions == 1
    assert result.transversions == 1
    assert result.fragments[0].strong == Verdict(CO, 1)


def test_ancient_mode_accepts_deamination_as_clean() -> None:
    # A/G at position 2 is strong; an A read is contaminant unless G->A damage is allowed
    assembly = Assembly("toy", "TTGTTTTT", [_whole("r1", 0, "TTATTTTT")])

    modern = run_check("TTATTTTT", assembly, _config())
    assert modern.fragments[0].strong == Verdict(CO, 1)
    assert modern.fragments[0].combined == Verdict(CO, 1)

    ancient = run_check("TTATTTTT", assembly, _config(adna=True))
    assert ancient.fragments[0].strong == Verdict(U, 0)
    assert ancient.strong.count(CO) == 0
    assert ancient.strong.estimate is None
    assert ancient.fragments[0].combined == Verdict(CL, 1)
    assert ancient.combined.count(CL) == 1


def _prepare(reference: str, consensus: str):
    alignment = align_globally(reference, consensus, 4)
    index = DiagnosticIndex.from_alignment(alignment.consensus, alignment.assembly)
    return alignment, index, FragmentRealigner(alignment, LocalAligner())


def test_first_upgrade_wins() -> None:
    # both reads are contaminant-only at the N/A position, with different bases
    alignment, index, realigner = _prepare("TTNTTCTT", "TTATTATT")
    fragments = [_whole("r1", 0, "TTGTTCTT"), _whole("r2", 0, "TTCTTCTT")]

    upgrades = discover_effective_positions(index, alignment, fragments, realigner)
    assert upgrades == 1
    assert index.get(2).strength is Strength.EFFECTIVE
    assert index.get(2).contaminant == "G"


def test_repeated_passes_on_one_index_are_stable() -> None:
    alignment, index, realigner = _prepare("TTRTTCTTGGAYTT", "TTATTATTGGATTT")
    fragments = [_whole("r1", 0, "TTGTTCTTGGACTT"), _whole("r2", 0, "TTATTATTGGATTT")]

    assert discover_effective_positions(index, alignment, fragments, realigner) == 2
    index.prune_weak()
    first = classify_fragments(index, alignment, fragments, realigner)
    snapshot = [(p, dp.strength, dp.contaminant) for p, dp in index]

    assert discover_effective_positions(index, alignment, fragments, realigner) == 0
    assert index.prune_weak() == 0
    second = classify_fragments(index, alignment, fragments, realigner)

    assert [(p, dp.strength, dp.contaminant) for p, dp in index] == snapshot
    assert second == first
    assert first[0][0].combined == Verdict(CO, 3)
