"""Concurrent extraction and aggregation of indels from an alignment file.

Data flow::

    RecordFeeder --records--> IndelWorker x N --insertions--> InsertionAggregator
                                              \\--deletions---> DeletionAggregator

All channels are bounded queues, so a slow aggregator throttles the workers and
slow workers throttle the feeder. Each frequency table has exactly one writer
(its aggregator thread), so no locks are needed. The orchestrator waits on a
single signal queue for stage completions, finished tables, and the first
error.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from tqdm import tqdm

from . import __version__
from .aggregate import DeletionAggregator, IndelFrequencyTable, InsertionAggregator
from .errors import UnmappedReadError
from .models import AlignmentRecord
from .plotting import length_histogram, plot_indel_length_hist
from .report import (
    DELETIONS_FILENAME,
    INSERTIONS_FILENAME,
    render_html_report,
    write_deletion_report,
    write_insertion_report,
)
from .source import iter_alignment_records
from .stages import END_OF_STREAM, PipelineCancelled, PipelineContext, Stage
from .utils import ensure_outdir, write_json
from .walker import walk_indels

logger = logging.getLogger(__name__)

# How long stop() waits for each thread after a failure (seconds).
_JOIN_TIMEOUT = 5.0

RecordSourceFactory = Callable[[], Iterable[AlignmentRecord]]


def default_threads() -> int:
    return os.cpu_count() or 1


class RecordFeeder(Stage):
    """Pulls records from the source into the bounded record queue.

    After the last record it closes the feed by enqueueing one
    ``END_OF_STREAM`` per worker; it is the only producer of that queue.
    """

    def __init__(
        self,
        ctx: PipelineContext,
        source: RecordSourceFactory,
        records: queue.Queue,
        *,
        n_workers: int,
        progress: bool = False,
    ) -> None:
        super().__init__(ctx, name="record-feeder")
        self.source = source
        self.records = records
        self.n_workers = n_workers
        self.progress = progress

    def work(self) -> None:
        n = 0
        records = self.source()
        bar = tqdm(records, unit="read", desc="Scanning alignments") if self.progress else None
        try:
            for record in bar if bar is not None else records:
                self.ctx.put(self.records, record)
                n += 1
        finally:
            if bar is not None:
                bar.close()
            # release the source's file handle when leaving early
            close = getattr(records, "close", None)
            if close is not None:
                close()

        for _ in range(self.n_workers):
            self.ctx.put(self.records, END_OF_STREAM)
        self.ctx.signal("feeder", n)


class IndelWorker(Stage):
    """Runs the indel walk on records from the shared feed."""

    def __init__(
        self,
        ctx: PipelineContext,
        records: queue.Queue,
        insertions: queue.Queue,
        deletions: queue.Queue,
        *,
        index: int,
        skip_unmapped: bool = False,
    ) -> None:
        super().__init__(ctx, name=f"indel-worker-{index}")
        self.records = records
        self.insertions = insertions
        self.deletions = deletions
        self.skip_unmapped = skip_unmapped
        self.counts: Counter = Counter()

    def work(self) -> None:
        while True:
            record = self.ctx.get(self.records)
            if record is END_OF_STREAM:
                break

            try:
                walk = walk_indels(record)
            except UnmappedReadError:
                if not self.skip_unmapped:
                    raise
                logger.debug("Skipping unmapped read %s", record.read_id)
                self.counts["unmapped_skipped"] += 1
                continue

            self.counts["records"] += 1
            if walk.insertions_without_seq:
                logger.debug(
                    "Read %s has no SEQ; dropped %d insertion(s)", record.read_id, walk.insertions_without_seq
                )
                self.counts["missing_seq"] += 1
            for ins in walk.insertions:
                self.ctx.put(self.insertions, ins)
            for dele in walk.deletions:
                self.ctx.put(self.deletions, dele)
            self.counts["insertion_events"] += len(walk.insertions)
            self.counts["deletion_events"] += len(walk.deletions)

        self.ctx.signal("worker", dict(self.counts))


@dataclass
class ScanResult:
    insertions: IndelFrequencyTable
    deletions: IndelFrequencyTable
    counts: Dict[str, int] = field(default_factory=dict)
    runtime_seconds: float = 0.0


class IndelPipeline:
    """Fan-out/fan-in pipeline from an alignment record source to two frequency tables.

    Parameters
    ----------
    source:
        Zero-argument callable returning an iterable of AlignmentRecord. It is
        called once, on the feeder thread.
    threads:
        Number of IndelWorker threads (default: CPU count).
    queue_size:
        Capacity of the record queue; event queues hold four times as many.
        Defaults to ``threads``.
    skip_unmapped:
        Count and skip unmapped reads instead of failing the run.
    progress:
        Show a tqdm progress bar over the records read.

    Example usage::

        pipeline = IndelPipeline(lambda: iter_alignment_records("reads.bam"), threads=4)
        result = pipeline.run()
    """

    def __init__(
        self,
        source: RecordSourceFactory,
        *,
        threads: Optional[int] = None,
        queue_size: Optional[int] = None,
        skip_unmapped: bool = False,
        progress: bool = False,
    ) -> None:
        self.threads = default_threads() if threads is None else int(threads)
        if self.threads < 1:
            raise ValueError("threads must be >= 1")
        self.queue_size = self.threads if queue_size is None else int(queue_size)
        if self.queue_size < 1:
            raise ValueError("queue_size must be >= 1")

        self.source = source
        self.skip_unmapped = skip_unmapped
        self.progress = progress

        self.ctx = PipelineContext()
        self.record_queue: queue.Queue = queue.Queue(maxsize=self.queue_size)
        self.insertion_queue: queue.Queue = queue.Queue(maxsize=4 * self.queue_size)
        self.deletion_queue: queue.Queue = queue.Queue(maxsize=4 * self.queue_size)

        self._stages: List[threading.Thread] = []

    def _start_stages(self) -> None:
        ctx = self.ctx
        self._stages = [
            InsertionAggregator(ctx, self.insertion_queue),
            DeletionAggregator(ctx, self.deletion_queue),
        ]
        self._stages += [
            IndelWorker(
                ctx,
                self.record_queue,
                self.insertion_queue,
                self.deletion_queue,
                index=i,
                skip_unmapped=self.skip_unmapped,
            )
            for i in range(self.threads)
        ]
        self._stages.append(
            RecordFeeder(
                ctx,
                self.source,
                self.record_queue,
                n_workers=self.threads,
                progress=self.progress,
            )
        )
        for stage in self._stages:
            stage.start()

    def _close_event_streams(self) -> None:
        # Only called once every worker has signalled completion, so no
        # producer can still be writing to either stream.
        self.ctx.put(self.insertion_queue, END_OF_STREAM)
        self.ctx.put(self.deletion_queue, END_OF_STREAM)

    def stop(self) -> None:
        """Cancel every stage and wait (bounded) for the threads to exit."""
        self.ctx.cancel_event.set()
        for stage in self._stages:
            if stage.is_alive():
                stage.join(timeout=_JOIN_TIMEOUT)
                if stage.is_alive():
                    logger.warning("%s did not stop cleanly", stage.name)

    def run(self) -> ScanResult:
        """Run to completion and return both tables, or raise the first stage error."""
        t0 = time.time()
        self._start_stages()

        feeder_done = False
        workers_pending = self.threads
        counts: Counter = Counter()
        tables: Dict[str, IndelFrequencyTable] = {}

        try:
            while not (feeder_done and workers_pending == 0 and len(tables) == 2):
                kind, payload = self.ctx.signals.get()
                if kind == "error":
                    raise payload
                if kind == "feeder":
                    feeder_done = True
                    counts["records_read"] = int(payload)
                elif kind == "worker":
                    workers_pending -= 1
                    counts.update(payload)
                    if workers_pending == 0:
                        try:
                            self._close_event_streams()
                        except PipelineCancelled:
                            # the failing stage has posted its error; the next get() raises it
                            continue
                elif kind in ("insertions", "deletions"):
                    tables[kind] = payload
        except BaseException:
            self.stop()
            raise

        for stage in self._stages:
            stage.join()

        for key in ("records", "unmapped_skipped", "missing_seq", "insertion_events", "deletion_events"):
            counts.setdefault(key, 0)

        dt = time.time() - t0
        logger.info(
            "Scanned %d records with %d workers in %.1fs: %d insertion / %d deletion events",
            counts["records_read"],
            self.threads,
            dt,
            counts["insertion_events"],
            counts["deletion_events"],
        )
        return ScanResult(
            insertions=tables["insertions"],
            deletions=tables["deletions"],
            counts=dict(counts),
            runtime_seconds=dt,
        )


def _length_counts(table: IndelFrequencyTable, length_of: Callable[[object], int]) -> Dict[int, int]:
    out: Counter = Counter()
    for _, signature, read_ids in table.items():
        out[length_of(signature)] += len(read_ids)
    return dict(out)


def run_indel_scan(
    alignment_path: str | Path,
    *,
    outdir: str | Path = ".",
    threads: Optional[int] = None,
    queue_size: Optional[int] = None,
    min_support: int = 2,
    skip_unmapped: bool = False,
    progress: bool = True,
    summary_json: Optional[str | Path] = None,
    html_report: bool = False,
) -> Dict[str, object]:
    """Main workhorse: scan an alignment file, write both indel reports, return a summary dict."""
    if min_support < 1:
        raise ValueError("min_support must be >= 1")

    alignment_path = str(alignment_path)
    pipeline = IndelPipeline(
        lambda: iter_alignment_records(alignment_path),
        threads=threads,
        queue_size=queue_size,
        skip_unmapped=skip_unmapped,
        progress=progress,
    )
    result = pipeline.run()

    outdir_path = ensure_outdir(outdir)
    insertions_path = outdir_path / INSERTIONS_FILENAME
    deletions_path = outdir_path / DELETIONS_FILENAME

    counts = dict(result.counts)
    counts["recurrent_insertions"] = write_insertion_report(
        result.insertions, insertions_path, min_support=min_support
    )
    counts["recurrent_deletions"] = write_deletion_report(
        result.deletions, deletions_path, min_support=min_support
    )

    summary: Dict[str, object] = {
        "alignment_path": alignment_path,
        "threads": pipeline.threads,
        "queue_size": pipeline.queue_size,
        "min_support": int(min_support),
        "skip_unmapped": bool(skip_unmapped),
        "insertions_path": str(insertions_path),
        "deletions_path": str(deletions_path),
        "counts": counts,
        "insertion_length_hist": length_histogram(_length_counts(result.insertions, len)),
        "deletion_length_hist": length_histogram(_length_counts(result.deletions, int)),
        "runtime_seconds": float(result.runtime_seconds),
    }

    if html_report:
        plots_dir = outdir_path / "plots"
        lengths_png = plots_dir / "indel_lengths.png"
        plot_indel_length_hist(
            insertion_hist=summary["insertion_length_hist"],
            deletion_hist=summary["deletion_length_hist"],
            out_png=lengths_png,
        )
        report_path = render_html_report(
            outdir=outdir_path,
            version=__version__,
            run=summary,
            insertions=result.insertions,
            deletions=result.deletions,
            plots={"indel_lengths": str(Path("plots") / lengths_png.name)},
        )
        summary["html_report"] = str(report_path)

    if summary_json is not None:
        write_json(summary_json, summary)

    return summary
