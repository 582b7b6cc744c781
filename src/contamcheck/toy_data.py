from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List

import pysam

from .utils import ensure_outdir, write_json

TOY_LENGTH = 800
TOY_CONTIG = "assembly"
READ_LENGTH = 100

# transversion partner used for every strongly diagnostic position
_TRANSVERSION = {"A": "C", "C": "A", "G": "T", "T": "G"}
# ambiguity code covering a base and its transition partner, and that partner
_AMBIGUOUS = {"A": ("R", "G"), "G": ("R", "A"), "C": ("Y", "T"), "T": ("Y", "C")}


def _write_fasta(path: Path, name: str, seq: str) -> None:
    lines = [f">{name}"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _make_read(name: str, start0: int, seq: str, *, mapq: int = 60) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = 0
    a.reference_id = 0
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    return a


def make_toy_data(*, outdir: str | Path) -> Dict[str, object]:
    """Create a tiny contaminant reference, assembly consensus, and BAM.

    The assembly differs from the contaminant by 50 transversions (strongly
    diagnostic) and nine positions where the contaminant carries an ambiguity
    code (weakly diagnostic; contaminant reads resolve them to the other base,
    so Pass 1 upgrades them). Every fourth read, plus one split read stored as
    ``pair1_f`` / ``pair1_b``, is drawn from the contaminant.

    Returns
    -------
    dict
        Paths to the generated files and the expected fragment counts.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(11)

    assembly = [rng.choice("ACGT") for _ in range(TOY_LENGTH)]
    contaminant_reads = list(assembly)
    reference = list(assembly)

    strong_positions = list(range(8, TOY_LENGTH, 16))
    for pos in strong_positions:
        reference[pos] = contaminant_reads[pos] = _TRANSVERSION[assembly[pos]]

    weak_positions = list(range(20, 700, 80))
    for pos in weak_positions:
        code, partner = _AMBIGUOUS[assembly[pos]]
        reference[pos] = code
        contaminant_reads[pos] = partner

    assembly_seq = "".join(assembly)
    reference_seq = "".join(reference)
    dirty_seq = "".join(contaminant_reads)

    reference_fa = outdir_p / "contaminant.fa"
    consensus_fa = outdir_p / "assembly.fa"
    _write_fasta(reference_fa, "toy_contaminant", reference_seq)
    _write_fasta(consensus_fa, TOY_CONTIG, assembly_seq)

    reads: List[pysam.AlignedSegment] = []
    n_dirty = 0
    n_clean = 0
    for i, start0 in enumerate(range(0, TOY_LENGTH - READ_LENGTH, 25)):
        if i % 4 == 0:
            source = dirty_seq
            n_dirty += 1
        else:
            source = assembly_seq
            n_clean += 1
        reads.append(_make_read(f"read{i:03d}", start0, source[start0 : start0 + READ_LENGTH]))

    # one split contaminant read; the front half comes first in file order
    reads.append(_make_read("pair1_f", 300, dirty_seq[300:350]))
    reads.append(_make_read("pair1_b", 350, dirty_seq[350:400]))
    n_dirty += 1

    reads.sort(key=lambda r: r.reference_start)

    bam_path = outdir_p / "reads.bam"
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": TOY_CONTIG, "LN": TOY_LENGTH}],
    }
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)
    pysam.index(str(bam_path))

    summary: Dict[str, object] = {
        "reference_fa": str(reference_fa),
        "consensus_fa": str(consensus_fa),
        "bam": str(bam_path),
        "outdir": str(outdir_p),
        "strong_positions": len(strong_positions),
        "weak_positions": len(weak_positions),
        "expected_contaminant": n_dirty,
        "expected_clean": n_clean,
    }
    write_json(outdir_p / "toy_summary.json", summary)
    return summary
