from __future__ import annotations

import logging
import re
from collections import Counter
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pysam

from .models import Assembly, Fragment, Reference, SegmentRole

logger = logging.getLogger(__name__)

# "<id>_f", "<id>_b" and "<id>,_f" mark the front/back half of a split read
_ROLE_SUFFIX = re.compile(r",?_([fb])$")


def read_fasta_records(path: str | Path) -> Dict[str, Tuple[str, str]]:
    """Return ``{name: (sequence, comment)}`` for every record of a FASTA file."""
    records: Dict[str, Tuple[str, str]] = {}
    with pysam.FastxFile(str(path)) as fh:
        for entry in fh:
            records[entry.name] = (entry.sequence or "", entry.comment or "")
    if not records:
        raise ValueError(f"No sequences found in FASTA: {path}")
    return records


def load_reference(path: str | Path) -> Reference:
    """Load the contaminant consensus (first record of a FASTA file)."""
    records = read_fasta_records(path)
    name, (seq, comment) = next(iter(records.items()))
    if len(records) > 1:
        logger.warning("%s holds %d sequences; using the first (%s)", path, len(records), name)
    return Reference(name=name, sequence=seq, description=comment)


def split_segment_role(
    name: str,
    *,
    is_paired: bool = False,
    is_read1: bool = False,
    is_read2: bool = False,
) -> Tuple[str, Optional[SegmentRole]]:
    """Derive the fragment identifier and segment role from a read.

    The role is None for a paired read flagged as neither first nor last segment
    whose name carries no `_f`/`_b` suffix.
    """
    m = _ROLE_SUFFIX.search(name)
    if m is not None and len(name) > 3 and m.start() > 0:
        return name[: m.start()], SegmentRole(m.group(1))
    if is_paired and is_read1:
        return name, SegmentRole.FRONT
    if is_paired and is_read2:
        return name, SegmentRole.BACK
    if is_paired:
        return name, None
    return name, SegmentRole.WHOLE


def fragment_from_read(read: pysam.AlignedSegment) -> Optional[Fragment]:
    """Turn an aligned read into per-position calls by walking its CIGAR once.

    Returns None for reads that do not place any base on the consensus and for
    reads whose segment role cannot be determined.
    """
    if read.is_unmapped or read.cigartuples is None:
        return None
    seq = read.query_sequence
    if seq is None:
        return None

    calls: List[str] = []
    insertions: Dict[int, str] = {}
    query_pos = 0

    for op, length in read.cigartuples:
        if op in (0, 7, 8):  # M, =, X: consumes query and ref
            calls.extend(seq[query_pos : query_pos + length])
            query_pos += length
        elif op == 1:  # I: attach to the preceding call (-1 before the first)
            key = len(calls) - 1
            insertions[key] = insertions.get(key, "") + seq[query_pos : query_pos + length]
            query_pos += length
        elif op in (2, 3):  # D, N: consumes ref only
            calls.extend("-" * length)
        elif op == 4:  # S: consumes query only
            query_pos += length
        else:  # H, P
            continue

    if not calls:
        return None

    fragment_id, role = split_segment_role(
        str(read.query_name),
        is_paired=bool(read.is_paired),
        is_read1=bool(read.is_read1),
        is_read2=bool(read.is_read2),
    )
    if role is None:
        logger.error("Read %s is paired but neither first nor last segment; skipping it", read.query_name)
        return None
    start = int(read.reference_start)
    return Fragment(
        fragment_id=fragment_id,
        role=role,
        start=start,
        end=start + len(calls) - 1,
        calls="".join(calls),
        insertions=insertions,
    )


def order_for_pairing(fragments: Iterable[Fragment]) -> List[Fragment]:
    """Keep file order, except that a front half is moved right behind its back half.

    Fronts whose back never shows up are appended at the end.
    """
    ordered: List[Fragment] = []
    held: Dict[str, List[Fragment]] = {}
    waiting_backs: Counter = Counter()

    for frag in fragments:
        if frag.role is SegmentRole.FRONT:
            if waiting_backs[frag.fragment_id]:
                waiting_backs[frag.fragment_id] -= 1
                ordered.append(frag)
            else:
                held.setdefault(frag.fragment_id, []).append(frag)
            continue

        ordered.append(frag)
        if frag.role is SegmentRole.BACK:
            fronts = held.get(frag.fragment_id)
            if fronts:
                ordered.append(fronts.pop(0))
            else:
                waiting_backs[frag.fragment_id] += 1

    for fronts in held.values():
        ordered.extend(fronts)
    return ordered


def load_assembly(
    bam_path: str | Path,
    consensus_fasta: str | Path,
    *,
    include_secondary: bool = False,
    include_supplementary: bool = False,
) -> Assembly:
    """Load an assembly: the consensus it was built on and its fragments in file order."""
    counts = {
        "reads_total": 0,
        "reads_unmapped": 0,
        "reads_skipped_secondary": 0,
        "reads_skipped_supplementary": 0,
        "reads_without_calls": 0,
        "reads_unknown_role": 0,
    }
    fragments: List[Fragment] = []

    with pysam.AlignmentFile(str(bam_path), "r") as bam:
        contigs = list(bam.references)
        if len(contigs) != 1:
            raise ValueError(
                f"Assembly {bam_path} must be aligned against exactly one consensus "
                f"(found {len(contigs)} reference sequences)"
            )
        contig = contigs[0]

        for read in bam.fetch(until_eof=True):
            counts["reads_total"] += 1
            if read.is_unmapped:
                counts["reads_unmapped"] += 1
                continue
            if read.is_secondary and not include_secondary:
                counts["reads_skipped_secondary"] += 1
                continue
            if read.is_supplementary and not include_supplementary:
                counts["reads_skipped_supplementary"] += 1
                continue
            frag = fragment_from_read(read)
            if frag is None:
                _, role = split_segment_role(
                    str(read.query_name),
                    is_paired=bool(read.is_paired),
                    is_read1=bool(read.is_read1),
                    is_read2=bool(read.is_read2),
                )
                counts["reads_unknown_role" if role is None else "reads_without_calls"] += 1
                continue
            fragments.append(frag)

    records = read_fasta_records(consensus_fasta)
    if contig in records:
        consensus = records[contig][0]
    elif len(records) == 1:
        name, (consensus, _) = next(iter(records.items()))
        logger.warning("Consensus record '%s' does not match BAM reference '%s'; using it anyway", name, contig)
    else:
        raise ValueError(f"No sequence named '{contig}' in consensus FASTA {consensus_fasta}")

    if counts["reads_unknown_role"]:
        logger.warning("%d reads skipped: segment role unknown", counts["reads_unknown_role"])

    beyond = sum(1 for f in fragments if f.end >= len(consensus))
    if beyond:
        logger.warning("%d fragments extend beyond the end of the consensus", beyond)

    logger.info(
        "Loaded %d fragments from %s (%d reads seen)", len(fragments), bam_path, counts["reads_total"]
    )
    logger.debug("Read counts: %s", counts)

    return Assembly(name=str(bam_path), consensus=consensus, fragments=order_for_pairing(fragments))
