from pathlib import Path
from typing import List, Optional, Tuple

import pysam
import pytest

from contamcheck.loaders import (
    fragment_from_read,
    load_assembly,
    load_reference,
    order_for_pairing,
    split_segment_role,
)
from contamcheck.models import Fragment, SegmentRole


def make_read(
    seq: str,
    start: int = 10,
    *,
    name: str = "r1",
    cigar: Optional[List[Tuple[int, int]]] = None,
    flag: int = 0,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = flag
    a.reference_id = 0
    a.reference_start = start
    a.mapping_quality = 60
    a.cigartuples = cigar if cigar is not None else [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    return a


def _frag(fragment_id: str, role: SegmentRole) -> Fragment:
    return Fragment(fragment_id, role, 0, 3, "ACGT")


def test_fragment_from_read_walks_cigar() -> None:
    # 1S 2M 1I 2M 1D 1M
    read = make_read("GACTGTA", cigar=[(4, 1), (0, 2), (1, 1), (0, 2), (2, 1), (0, 1)])
    frag = fragment_from_read(read)
    assert frag is not None
    assert frag.calls == "ACGT-A"
    assert dict(frag.insertions) == {1: "T"}
    assert (frag.start, frag.end) == (10, 15)
    assert frag.call_at(14) == "-"
    assert frag.read_sequence() == "ACTGTA"


def test_leading_insertion_is_kept() -> None:
    frag = fragment_from_read(make_read("TTACG", cigar=[(1, 2), (0, 3)]))
    assert frag.calls == "ACG"
    assert dict(frag.insertions) == {-1: "TT"}
    assert frag.read_sequence() == "TTACG"


def test_split_segment_role() -> None:
    assert split_segment_role("frag1_f") == ("frag1", SegmentRole.FRONT)
    assert split_segment_role("frag1,_b") == ("frag1", SegmentRole.BACK)
    assert split_segment_role("frag1") == ("frag1", SegmentRole.WHOLE)
    assert split_segment_role("frag1", is_paired=True, is_read1=True) == ("frag1", SegmentRole.FRONT)
    assert split_segment_role("frag1", is_paired=True, is_read2=True) == ("frag1", SegmentRole.BACK)
    assert split_segment_role("frag1", is_paired=True) == ("frag1", None)
    assert split_segment_role("frag1_b", is_paired=True) == ("frag1", SegmentRole.BACK)


def test_paired_read_without_segment_flag_is_skipped(tmp_path: Path) -> None:
    orphan = make_read("ACGTA", 0, name="odd", flag=1)
    assert fragment_from_read(orphan) is None

    bam = _write_bam(tmp_path / "p.bam", [("asm", 20)], [orphan, make_read("CGTAC", 1, name="w1")])
    fa = _write_fasta(tmp_path / "p.fa", [("asm", "ACGTACGTACGTACGTACGT")])
    assembly = load_assembly(bam, fa)
    assert [f.label for f in assembly.fragments] == ["w1/a"]


def test_order_for_pairing_puts_back_first() -> None:
    front = _frag("a", SegmentRole.FRONT)
    back = _frag("a", SegmentRole.BACK)
    whole = _frag("w", SegmentRole.WHOLE)
    orphan = _frag("o", SegmentRole.FRONT)

    assert order_for_pairing([front, whole, back]) == [whole, back, front]
    assert order_for_pairing([back, whole, front]) == [back, whole, front]
    assert order_for_pairing([orphan, whole]) == [whole, orphan]


def _write_fasta(path: Path, records: List[Tuple[str, str]]) -> Path:
    path.write_text("".join(f">{name}\n{seq}\n" for name, seq in records), encoding="utf-8")
    return path


def _write_bam(path: Path, contigs: List[Tuple[str, int]], reads: List[pysam.AlignedSegment]) -> Path:
    header = {"HD": {"VN": "1.6"}, "SQ": [{"SN": name, "LN": length} for name, length in contigs]}
    with pysam.AlignmentFile(str(path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)
    return path


def test_load_reference_takes_first_record(tmp_path: Path) -> None:
    fa = _write_fasta(tmp_path / "ref.fa", [("first", "ACGTRY"), ("second", "TTTT")])
    ref = load_reference(fa)
    assert ref.name == "first"
    assert ref.sequence == "ACGTRY"
    assert ref.reverse_complement == "RYACGT"


def test_load_assembly_filters_and_pairs(tmp_path: Path) -> None:
    unmapped = pysam.AlignedSegment()
    unmapped.query_name = "u1"
    unmapped.query_sequence = "ACGT"
    unmapped.flag = 4
    unmapped.query_qualities = pysam.qualitystring_to_array("IIII")

    reads = [
        make_read("ACGTA", 0, name="pr_f"),
        make_read("CGTAC", 1, name="w1"),
        make_read("GTACG", 2, name="sec", flag=256),
        make_read("TACGT", 3, name="pr_b"),
        unmapped,
    ]
    bam = _write_bam(tmp_path / "a.bam", [("asm", 20)], reads)
    fa = _write_fasta(tmp_path / "a.fa", [("other", "A" * 20), ("asm", "ACGTACGTACGTACGTACGT")])

    assembly = load_assembly(bam, fa)
    assert assembly.consensus == "ACGTACGTACGTACGTACGT"
    assert [f.label for f in assembly.fragments] == ["w1/a", "pr/b", "pr/f"]


def test_load_assembly_rejects_multiple_references(tmp_path: Path) -> None:
    bam = _write_bam(tmp_path / "m.bam", [("a", 10), ("b", 10)], [make_read("ACGT", 0)])
    fa = _write_fasta(tmp_path / "m.fa", [("a", "ACGTACGTAC")])
    with pytest.raises(ValueError):
        load_assembly(bam, fa)


def test_load_assembly_requires_matching_consensus(tmp_path: Path) -> None:
    bam = _write_bam(tmp_path / "c.bam", [("asm", 10)], [make_read("ACGT", 0)])
    fa = _write_fasta(tmp_path / "c.fa", [("x", "ACGTACGTAC"), ("y", "ACGTACGTAC")])
    with pytest.raises(ValueError):
        load_assembly(bam, fa)
