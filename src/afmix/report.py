from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>afmix Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    pre { padding: 12px; overflow-x: auto; }
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

<h1>afmix Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>BAM</th><td><code>{{ bam_path }}</code></td></tr>
      <tr><th>Reference</th><td><code>{{ ref_path }}</code></td></tr>
      <tr><th>Region</th><td><code>{{ region or "all" }}</code></td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Model</h3>
    <table>
      <tr><th>Chromosomes (N)</th><td>{{ config.n_chromosomes }}</td></tr>
      <tr><th>Reference LOD threshold</th><td>{{ config.ref_lod_threshold }}</td></tr>
      <tr><th>Variant LOD threshold</th><td>{{ config.variant_lod_threshold }}</td></tr>
      <tr><th>q grid step</th><td>{{ config.q_step }}</td></tr>
      <tr><th>Downsample</th><td>{{ config.downsample or "off" }}</td></tr>
      <tr><th>Single-base probabilities only</th><td>{{ config.force_single_base_probs }}</td></tr>
    </table>
  </div>
</div>

<h2>Pileup</h2>
<table>
  <tr><th>Loci seen</th><td>{{ source_counts.loci_seen }}</td></tr>
  <tr><th>Skipped (reference not A/C/G/T)</th><td>{{ source_counts.loci_skipped_ref_base }}</td></tr>
  <tr><th>Observations skipped: duplicates</th><td>{{ source_counts.obs_skipped_duplicates }}</td></tr>
  <tr><th>Observations skipped: secondary</th><td>{{ source_counts.obs_skipped_secondary }}</td></tr>
  <tr><th>Observations skipped: supplementary</th><td>{{ source_counts.obs_skipped_supplementary }}</td></tr>
  <tr><th>Observations skipped: MAPQ &lt; {{ filters.min_mapq }}</th><td>{{ source_counts.obs_skipped_mapq }}</td></tr>
  <tr><th>Observations skipped: baseQ &lt; {{ filters.min_baseq }}</th><td>{{ source_counts.obs_skipped_baseq }}</td></tr>
</table>

<h2>Calls</h2>
<table>
  <tr><th>Loci evaluated</th><td>{{ counts.loci_evaluated }}</td></tr>
  <tr><th>Zero-depth loci</th><td>{{ counts.loci_zero_depth }}</td></tr>
  <tr><th>Confidently reference</th><td>{{ counts.loci_confident_ref }}</td></tr>
  <tr><th>No call</th><td>{{ counts.loci_no_call }}</td></tr>
  <tr><th>Reference intervals</th><td>{{ counts.reference_intervals }}</td></tr>
  <tr><th>Variants</th><td>{{ counts.variants }}</td></tr>
  <tr><th>Heterozygous / mixed</th><td>{{ counts.genotype_het }}</td></tr>
  <tr><th>Homozygous</th><td>{{ counts.genotype_hom }}</td></tr>
  {% if longest_interval %}
  <tr><th>Longest reference interval</th>
      <td><code>{{ longest_interval.contig }}:{{ longest_interval.start }}-{{ longest_interval.end }}</code>
          ({{ longest_interval.length }} bp)</td></tr>
  {% endif %}
</table>

<h2>Plots</h2>

<div class="grid">
  <div class="card">
    <h3>LOD vs reference</h3>
    <img src="{{ plots.lod_hist }}" alt="LOD histogram">
  </div>
  <div class="card">
    <h3>Locus outcomes</h3>
    <img src="{{ plots.call_counts }}" alt="call counts">
  </div>
</div>

<div class="grid" style="margin-top:16px;">
  <div class="card">
    <h3>Depth per locus</h3>
    <img src="{{ plots.depth_hist }}" alt="depth histogram">
  </div>
</div>

<h2>Outputs</h2>
<ul>
  <li><code>{{ calls_path }}</code> (reference intervals and variant records)</li>
  <li><code>summary.json</code> (machine-readable summary)</li>
</ul>

<h2>Interpretation notes</h2>
<ul>
  <li>LODs are log10 posterior ratios of the best non-reference mixture against pure reference.</li>
  <li>Loci between the two thresholds are neither reported as reference nor as variants.</li>
  <li>The mixture prior is only informative for N = 2; other N rely on the genotype prior alone.</li>
</ul>

<hr>
<p class="small">afmix {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    run: Dict[str, Any],
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        bam_path=run.get("bam_path"),
        ref_path=run.get("ref_path"),
        region=run.get("region"),
        config=run.get("config", {}),
        filters=run.get("filters", {}),
        source_counts=run.get("source_counts", {}),
        counts=run.get("counts", {}),
        longest_interval=run.get("longest_reference_interval"),
        calls_path=run.get("calls_path"),
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path
