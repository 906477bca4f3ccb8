from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Tuple

from jinja2 import Template

from .aggregate import IndelFrequencyTable
from .errors import OutputWriteError

logger = logging.getLogger(__name__)

INSERTIONS_FILENAME = "insertions.txt"
DELETIONS_FILENAME = "deletions.txt"

INSERTION_HEADER = ("ref_start", "insertion", "samples")
DELETION_HEADER = ("ref_start", "length", "samples")

SAMPLE_SEPARATOR = "|"


def iter_report_rows(
    table: IndelFrequencyTable, *, min_support: int = 2
) -> Iterator[Tuple[int, Any, List[str]]]:
    """Yield ``(ref_start_1based, signature, supporters)`` for recurrent indels.

    Coordinates ascend, signatures within a coordinate are sorted (strings
    lexicographically, lengths numerically) and supporters are sorted, so the
    output does not depend on the order in which worker threads delivered
    events.
    """
    for coordinate, signature, read_ids in table.items():
        if len(read_ids) < min_support:
            continue
        yield coordinate + 1, signature, sorted(read_ids)


def _write_table(
    table: IndelFrequencyTable,
    path: str | Path,
    header: Tuple[str, str, str],
    *,
    min_support: int,
) -> int:
    path = Path(path)
    n = 0
    try:
        with open(path, "wt", encoding="utf-8", newline="\n") as fh:
            fh.write("\t".join(header) + "\n")
            for ref_start, signature, read_ids in iter_report_rows(table, min_support=min_support):
                fh.write(f"{ref_start}\t{signature}\t{SAMPLE_SEPARATOR.join(read_ids)}\n")
                n += 1
    except OSError as e:
        raise OutputWriteError(f"Cannot write report {path}: {e}", path=path) from e

    logger.info("Wrote %d recurrent indels to %s", n, path)
    return n


def write_insertion_report(
    table: IndelFrequencyTable, path: str | Path, *, min_support: int = 2
) -> int:
    """Write ``insertions.txt``; returns the number of data lines."""
    return _write_table(table, path, INSERTION_HEADER, min_support=min_support)


def write_deletion_report(
    table: IndelFrequencyTable, path: str | Path, *, min_support: int = 2
) -> int:
    """Write ``deletions.txt``; returns the number of data lines."""
    return _write_table(table, path, DELETION_HEADER, min_support=min_support)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>indelscan report</title>
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

<h1>indelscan report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Input</h3>
    <table>
      <tr><th>Alignments</th><td><code>{{ alignment_path }}</code></td></tr>
      <tr><th>Worker threads</th><td>{{ threads }}</td></tr>
      <tr><th>Minimum supporting reads</th><td>{{ min_support }}</td></tr>
      <tr><th>Runtime</th><td>{{ "%.1f"|format(runtime_seconds) }} s</td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Counts</h3>
    <table>
      <tr><th>Records scanned</th><td>{{ counts.records }}</td></tr>
      <tr><th>Unmapped skipped</th><td>{{ counts.unmapped_skipped }}</td></tr>
      <tr><th>Reads without SEQ (insertions dropped)</th><td>{{ counts.missing_seq }}</td></tr>
      <tr><th>Insertion events</th><td>{{ counts.insertion_events }}</td></tr>
      <tr><th>Deletion events</th><td>{{ counts.deletion_events }}</td></tr>
      <tr><th>Recurrent insertions</th><td>{{ counts.recurrent_insertions }}</td></tr>
      <tr><th>Recurrent deletions</th><td>{{ counts.recurrent_deletions }}</td></tr>
    </table>
  </div>
</div>

{% if plots %}
<h2>Indel lengths</h2>
<div class="card">
  <img src="{{ plots.indel_lengths }}" alt="indel length histogram">
</div>
{% endif %}

<h2>Top recurrent insertions</h2>
<table>
  <tr><th>ref_start</th><th>insertion</th><th>supporting reads</th></tr>
  {% for row in top_insertions %}
  <tr><td>{{ row[0] }}</td><td><code>{{ row[1] }}</code></td><td>{{ row[2] }}</td></tr>
  {% else %}
  <tr><td colspan="3">none</td></tr>
  {% endfor %}
</table>

<h2>Top recurrent deletions</h2>
<table>
  <tr><th>ref_start</th><th>length</th><th>supporting reads</th></tr>
  {% for row in top_deletions %}
  <tr><td>{{ row[0] }}</td><td>{{ row[1] }}</td><td>{{ row[2] }}</td></tr>
  {% else %}
  <tr><td colspan="3">none</td></tr>
  {% endfor %}
</table>

<h2>Outputs</h2>
<ul>
  <li><code>{{ insertions_path }}</code></li>
  <li><code>{{ deletions_path }}</code></li>
</ul>

<hr>
<p class="small">indelscan {{ version }}</p>
</body>
</html>"""
)


def _top_rows(table: IndelFrequencyTable, *, min_support: int, limit: int) -> List[Tuple[int, Any, int]]:
    rows = [(pos, sig, len(ids)) for pos, sig, ids in iter_report_rows(table, min_support=min_support)]
    # most supported first; ties keep report order
    rows.sort(key=lambda r: -r[2])
    return rows[:limit]


def render_html_report(
    *,
    outdir: str | Path,
    version: str,
    run: Dict[str, Any],
    insertions: IndelFrequencyTable,
    deletions: IndelFrequencyTable,
    plots: Dict[str, str],
    top_n: int = 20,
) -> Path:
    outdir = Path(outdir)
    min_support = int(run.get("min_support", 2))

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        alignment_path=run.get("alignment_path"),
        threads=run.get("threads"),
        min_support=min_support,
        runtime_seconds=float(run.get("runtime_seconds", 0.0)),
        counts=run.get("counts", {}),
        insertions_path=run.get("insertions_path"),
        deletions_path=run.get("deletions_path"),
        top_insertions=_top_rows(insertions, min_support=min_support, limit=top_n),
        top_deletions=_top_rows(deletions, min_support=min_support, limit=top_n),
        plots=plots,
    )

    out_path = outdir / "report.html"
    try:
        out_path.write_text(html, encoding="utf-8")
    except OSError as e:
        raise OutputWriteError(f"Cannot write report {out_path}: {e}", path=out_path) from e
    return out_path
