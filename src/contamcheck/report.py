from __future__ import annotations

import csv
import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Template

from .classifier import CheckResult
from .config import CheckConfig
from .models import ClassTally, FragmentClass, Strength
from .plotting import plot_class_counts
from .utils import write_json

logger = logging.getLogger(__name__)

CLASS_ORDER: List[FragmentClass] = list(FragmentClass)
_LABEL_WIDTH = max(len(cls.label) for cls in CLASS_ORDER)


_NARRATIVE_TEMPLATE = Template(
    """{{ name }}

  {{ r.distance }} alignment distance between reference and assembly.
  {{ r.differences }} total differences between reference and assembly.
  {{ r.differences }} diagnostic positions{{ span }}, {{ r.strong_positions }} of which are strongly diagnostic.
  {{ r.effective_positions }} effectively diagnostic positions{{ span }}, {{ r.transversions }} of which are transversions.

  strongly diagnostic positions: {{ strong_now }}
{% for line in strong_lines %}{{ line }}
{% endfor %}
  effectively diagnostic positions: {{ r.effective_positions }}
{% for line in combined_lines %}{{ line }}
{% endfor %}
""",
    keep_trailing_newline=True,
)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Contamination Check Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>Contamination Check Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>Assembly</th><td><code>{{ summary.name }}</code></td></tr>
      <tr><th>Contaminant reference</th><td><code>{{ summary.reference }}</code></td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Options</h3>
    <table>
      <tr><th>Ancient DNA</th><td>{{ summary.config.adna }}</td></tr>
      <tr><th>Transversions only</th><td>{{ summary.config.transversions_only }}</td></tr>
      <tr><th>Span</th><td>{{ summary.config.span_from }} .. {{ summary.config.span_to if summary.config.span_to is not none else "end" }}</td></tr>
      <tr><th>Min. diagnostic positions</th><td>{{ summary.config.min_diagnostic_positions }}</td></tr>
      <tr><th>Confidence</th><td>{{ summary.config.confidence }}</td></tr>
    </table>
  </div>
</div>

<h2>Diagnostic positions</h2>
<table>
  <tr><th>Alignment distance</th><td>{{ summary.distance }}</td></tr>
  <tr><th>Total differences</th><td>{{ summary.differences }}</td></tr>
  <tr><th>Strongly diagnostic</th><td>{{ summary.strong_positions }}</td></tr>
  <tr><th>Upgraded to effective</th><td>{{ summary.upgrades }}</td></tr>
  <tr><th>Effectively diagnostic</th><td>{{ summary.effective_positions }}</td></tr>
  <tr><th>Transversions</th><td>{{ summary.transversions }}</td></tr>
</table>

<h2>Fragments</h2>
<table>
  <tr><th>Class</th><th>Strong positions only</th><th>All effective positions</th></tr>
  {% for label in labels %}
  <tr><td>{{ label }}</td><td>{{ summary.strong.counts[label] }}</td><td>{{ summary.combined.counts[label] }}</td></tr>
  {% endfor %}
  <tr>
    <th>Contamination</th>
    {% for key in ["strong", "combined"] %}
    {% set est = summary[key].estimate %}
    <td>{% if est %}{{ "%.1f .. %.1f .. %.1f%%"|format(est.lower, est.estimate, est.upper) }}{% else %}N/A{% endif %}</td>
    {% endfor %}
  </tr>
</table>

{% if summary.anomalies %}
<h2>Anomalies</h2>
<table>
  {% for k, v in summary.anomalies|dictsort %}
  <tr><th>{{ k }}</th><td>{{ v }}</td></tr>
  {% endfor %}
</table>
{% endif %}

<h2>Plots</h2>
<div class="card">
  <h3>Fragment classes</h3>
  <img src="{{ plots.class_counts }}" alt="class counts">
</div>

<h2>Outputs</h2>
<ul>
  <li><code>fragments.tsv</code> (per-fragment verdicts)</li>
  <li><code>summary.json</code> (machine-readable summary)</li>
</ul>

<h2>Interpretation notes</h2>
<ul>
  <li>The interval is a {{ (summary.config.confidence * 100)|round(1) }}% Wilson score interval over clean and polluting fragments only.</li>
  <li>Conflicting and nonsensical fragments usually point at sequencing errors or misassembly, not contamination.</li>
</ul>

<hr>
<p class="small">contamcheck {{ version }}</p>
</body>
</html>"""
)


def _class_lines(tally: ClassTally) -> List[str]:
    lines = []
    for cls in CLASS_ORDER:
        line = f"  {cls.label:>{_LABEL_WIDTH}} fragments: {tally.count(cls)}"
        if cls is FragmentClass.CONTAMINANT and tally.estimate is not None:
            est = tally.estimate
            line += f" ({est.lower:.1f} .. {est.estimate:.1f} .. {est.upper:.1f}%)"
        lines.append(line)
    return lines


def render_narrative(result: CheckResult, config: CheckConfig) -> str:
    """Human-readable summary of one check."""
    span = ""
    if config.has_span:
        upper = config.span_to if config.span_to is not None else "end"
        span = f" in range [{config.span_from},{upper})"
    return _NARRATIVE_TEMPLATE.render(
        name=result.name,
        r=result,
        span=span,
        strong_now=result.index.count(Strength.STRONG),
        strong_lines=_class_lines(result.strong),
        combined_lines=_class_lines(result.combined),
    )


def table_header() -> str:
    cols = ["#Filename", "Aln.dist", "#diff", "#weak", "#tv"]
    for prefix, suffix in (("#strong", ""), ("#eff", "'")):
        cols.append(prefix)
        cols.extend(cls.label + suffix for cls in CLASS_ORDER)
        cols.extend(["LB" + suffix, "ML" + suffix, "UB" + suffix])
    return "\t".join(cols)


def _tally_cells(tally: ClassTally) -> List[str]:
    cells = [str(tally.count(cls)) for cls in CLASS_ORDER]
    est = tally.estimate
    if est is None:
        cells.extend(["N/A", "N/A", "N/A"])
    else:
        cells.extend([f"{est.lower:.1f}", f"{est.estimate:.1f}", f"{est.upper:.1f}"])
    return cells


def table_row(result: CheckResult) -> str:
    """One tab-separated line; columns follow :func:`table_header`."""
    cells = [
        result.name,
        str(result.distance),
        str(result.differences),
        str(result.differences),
        str(result.transversions),
        str(result.strong_positions),
    ]
    cells.extend(_tally_cells(result.strong))
    cells.append(str(result.effective_positions))
    cells.extend(_tally_cells(result.combined))
    return "\t".join(cells)


def _tally_dict(tally: ClassTally) -> Dict[str, Any]:
    est = tally.estimate
    return {
        "counts": {cls.label: tally.count(cls) for cls in CLASS_ORDER},
        "estimate": None
        if est is None
        else {
            "lower": round(est.lower, 3),
            "estimate": round(est.estimate, 3),
            "upper": round(est.upper, 3),
            "contaminant": est.contaminant,
            "total": est.total,
        },
    }


def summary_dict(
    result: CheckResult,
    config: CheckConfig,
    *,
    reference: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "name": result.name,
        "reference": reference,
        "config": {
            "adna": config.adna,
            "transversions_only": config.transversions_only,
            "span_from": config.span_from,
            "span_to": config.span_to,
            "min_diagnostic_positions": config.min_diagnostic_positions,
            "max_distance": config.max_distance,
            "min_strong_positions": config.min_strong_positions,
            "force": config.force,
            "confidence": config.confidence,
        },
        "distance": result.distance,
        "differences": result.differences,
        "strong_positions": result.strong_positions,
        "effective_positions": result.effective_positions,
        "transversions": result.transversions,
        "upgrades": result.upgrades,
        "fragments": len(result.fragments),
        "strong": _tally_dict(result.strong),
        "combined": _tally_dict(result.combined),
        "anomalies": dict(result.anomalies),
    }


def write_fragments_tsv(result: CheckResult, out_path: str | Path) -> Path:
    out_path = Path(out_path)
    with open(out_path, "wt", encoding="utf-8", newline="") as f:
        w = csv.writer(f, delimiter="\t", lineterminator="\n")
        w.writerow(
            [
                "fragment_id",
                "role",
                "start",
                "end",
                "overlap",
                "aligned",
                "strong_class",
                "strong_votes",
                "combined_class",
                "combined_votes",
            ]
        )
        for fr in result.fragments:
            w.writerow(
                [
                    fr.fragment_id,
                    fr.role.value,
                    fr.start,
                    fr.end,
                    fr.overlap,
                    int(fr.aligned),
                    fr.strong.cls.label,
                    fr.strong.votes,
                    fr.combined.cls.label,
                    fr.combined.votes,
                ]
            )
    return out_path


def render_report(
    *,
    outdir: str | Path,
    version: str,
    summary: Dict[str, Any],
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        summary=summary,
        labels=[cls.label for cls in CLASS_ORDER],
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path


def write_outputs(
    result: CheckResult,
    config: CheckConfig,
    *,
    outdir: str | Path,
    version: str,
    reference: Optional[str] = None,
) -> Path:
    """Write summary.json, fragments.tsv, the class-count plot and report.html; return the report path."""
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    summary = summary_dict(result, config, reference=reference)
    write_json(outdir / "summary.json", summary)
    write_fragments_tsv(result, outdir / "fragments.tsv")

    class_counts_png = outdir / "plots" / "class_counts.png"
    plot_class_counts(
        strong=summary["strong"]["counts"],
        combined=summary["combined"]["counts"],
        out_png=class_counts_png,
        title=f"Fragment classes: {Path(result.name).name}",
    )
    plots_rel = {"class_counts": str(Path("plots") / class_counts_png.name)}

    report_path = render_report(outdir=outdir, version=version, summary=summary, plots=plots_rel)
    logger.info("Report written: %s", report_path)
    return report_path
