from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

from . import __version__
from .classifier import run_check
from .config import DEFAULT_CONFIDENCE, DEFAULT_MIN_STRONG_POSITIONS, CheckConfig
from .errors import ContamCheckError
from .loaders import load_assembly, load_reference
from .report import render_narrative, table_header, table_row, write_outputs
from .toy_data import make_toy_data
from .validation import parse_span


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _span(text: str) -> Tuple[int, Optional[int]]:
    try:
        return parse_span(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _confidence(text: str) -> float:
    value = float(text)
    if not 0.0 < value < 1.0:
        raise argparse.ArgumentTypeError(f"Confidence must be between 0 and 1 (exclusive): {text}")
    return value


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    sys.stderr.write(f"{err.__class__.__name__}: {err}\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="contamcheck",
        description=(
            "contamcheck: estimate how many fragments of an assembly come from a known "
            "contaminant (e.g. modern human mtDNA in an ancient sample), with a Wilson "
            "confidence interval."
        ),
    )
    p.add_argument("--version", action="version", version=f"contamcheck {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny contaminant reference, assembly consensus, and BAM for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # check
    # -----------------
    c = sub.add_parser(
        "check",
        help="Classify the fragments of one or more assemblies as clean or polluting.",
    )
    c.add_argument("bams", nargs="+", type=_path_exists, metavar="BAM", help="Assembly fragments (BAM/SAM).")
    c.add_argument(
        "--consensus",
        required=True,
        type=_path_exists,
        help="FASTA with the assembly consensus the BAM(s) are aligned to.",
    )
    c.add_argument(
        "-r",
        "--reference",
        required=True,
        type=_path_exists,
        help="FASTA with the contaminant consensus (first record is used).",
    )
    c.add_argument(
        "-a",
        "--ancient",
        action="store_true",
        help="Treat fragments as ancient DNA (allow C->T / G->A deamination).",
    )
    c.add_argument(
        "-t",
        "--transversions",
        action="store_true",
        help="Count only transversions as diagnostic.",
    )
    c.add_argument(
        "-s",
        "--span",
        type=_span,
        default=None,
        metavar="M-N",
        help="Only use diagnostic positions in assembly positions M..N (1-based, inclusive).",
    )
    c.add_argument(
        "-n",
        "--numpos",
        type=int,
        default=1,
        help="Fragments need at least this many diagnostic positions to be classified.",
    )
    c.add_argument(
        "-d",
        "--maxd",
        type=int,
        default=None,
        help="Maximum edit distance between the two consensus sequences (default: 10%% of the longer one).",
    )
    c.add_argument(
        "--min-strong",
        type=int,
        default=DEFAULT_MIN_STRONG_POSITIONS,
        help="Refuse to run with fewer strongly diagnostic positions than this.",
    )
    c.add_argument(
        "-F",
        "--force",
        action="store_true",
        help="Run even if there are too few strongly diagnostic positions.",
    )
    c.add_argument(
        "--confidence",
        type=_confidence,
        default=DEFAULT_CONFIDENCE,
        help="Two-sided confidence level of the contamination interval.",
    )
    c.add_argument("-T", "--table", action="store_true", help="Print one tab-separated line per input.")
    c.add_argument(
        "--outdir",
        default=None,
        help="Optional output directory for summary.json, fragments.tsv, plots, and report.html.",
    )
    c.add_argument("--no-progress", action="store_true", help="Do not show progress bars.")
    c.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v/-vv; -vvv and up add per-position diagnostics).",
    )

    return p


# -----------------
# Command handlers
# -----------------

def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def _config_from_args(args: argparse.Namespace) -> CheckConfig:
    span_from, span_to = args.span if args.span is not None else (0, None)
    return CheckConfig(
        adna=bool(args.ancient),
        transversions_only=bool(args.transversions),
        span_from=span_from,
        span_to=span_to,
        min_diagnostic_positions=int(args.numpos),
        max_distance=args.maxd,
        min_strong_positions=int(args.min_strong),
        force=bool(args.force),
        confidence=float(args.confidence),
        verbosity=int(args.verbose),
        progress=not bool(args.no_progress),
    )


def cmd_check(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve() if args.outdir else None
    log_path = _log_path(outdir, "check.log") if outdir is not None else None
    _setup_logging(args.verbose, logfile=log_path)

    logger = logging.getLogger("contamcheck")
    logger.info("contamcheck %s", __version__)

    try:
        config = _config_from_args(args)
        reference = load_reference(args.reference)
        logger.info("Contaminant reference: %s (%d bp)", reference.name, len(reference.sequence))

        if args.table:
            print(table_header())

        failed = 0
        for bam in args.bams:
            try:
                assembly = load_assembly(bam, args.consensus)
                result = run_check(reference.sequence, assembly, config)
            except ContamCheckError as e:
                logger.error("%s: %s", bam, e)
                failed += 1
                continue

            if args.table:
                print(table_row(result))
            else:
                print(render_narrative(result, config))

            if outdir is not None:
                target = outdir if len(args.bams) == 1 else outdir / Path(bam).stem
                write_outputs(
                    result,
                    config,
                    outdir=target,
                    version=__version__,
                    reference=reference.name,
                )

        if failed:
            logger.error("%d of %d inputs failed.", failed, len(args.bams))
            return 1
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "check":
        return cmd_check(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
