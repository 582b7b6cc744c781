import json
from pathlib import Path

from contamcheck.classifier import run_check
from contamcheck.config import CheckConfig
from contamcheck.models import Assembly, Fragment, SegmentRole
from contamcheck.report import render_narrative, table_header, table_row, write_outputs


def _result(config: CheckConfig):
    fragments = [
        Fragment("dirty", SegmentRole.WHOLE, 0, 7, "ACGTACGT"),
        Fragment("clean", SegmentRole.WHOLE, 0, 7, "ACGCACGT"),
    ]
    return run_check("ACGTACGT", Assembly("sample.bam", "ACGCACGT", fragments), config)


def test_narrative_mentions_counts_and_interval() -> None:
    config = CheckConfig(min_strong_positions=0, max_distance=2)
    text = render_narrative(_result(config), config)
    assert text.startswith("sample.bam\n")
    assert "  1 alignment distance between reference and assembly." in text
    assert "1 diagnostic positions, 1 of which are strongly diagnostic." in text
    assert "   polluting fragments: 1 (" in text
    assert "       clean fragments: 1\n" in text
    assert "in range" not in text


def test_narrative_reports_span() -> None:
    config = CheckConfig(min_strong_positions=0, max_distance=2, span_from=2, span_to=6)
    text = render_narrative(_result(config), config)
    assert "diagnostic positions in range [2,6)" in text


def test_table_row_matches_header() -> None:
    config = CheckConfig(min_strong_positions=0, max_distance=2)
    header = table_header().split("\t")
    row = table_row(_result(config)).split("\t")
    assert len(header) == len(row)
    assert header[:6] == ["#Filename", "Aln.dist", "#diff", "#weak", "#tv", "#strong"]
    assert "polluting'" in header
    assert row[0] == "sample.bam"
    assert row[header.index("polluting")] == "1"
    assert row[header.index("ML")] == "50.0"


def test_table_row_without_estimate() -> None:
    config = CheckConfig(min_strong_positions=0, max_distance=2)
    result = run_check("ACGTACGT", Assembly("same.bam", "ACGTACGT", []), config)
    assert table_row(result).endswith("N/A\tN/A\tN/A")


def test_write_outputs(tmp_path: Path) -> None:
    config = CheckConfig(min_strong_positions=0, max_distance=2)
    report = write_outputs(_result(config), config, outdir=tmp_path, version="test", reference="ref")
    assert report == tmp_path / "report.html"
    assert "Contamination Check Report" in report.read_text(encoding="utf-8")
    assert (tmp_path / "plots" / "class_counts.png").exists()

    summary = json.loads((tmp_path / "summary.json").read_text(encoding="utf-8"))
    assert summary["strong"]["counts"]["polluting"] == 1
    assert summary["combined"]["estimate"]["total"] == 2

    lines = (tmp_path / "fragments.tsv").read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("fragment_id\trole")
    assert len(lines) == 3
