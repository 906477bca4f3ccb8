from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .errors import IndelScanError
from .pipeline import default_threads, run_indel_scan
from .toy_data import make_toy_data


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


def _positive_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not an integer: {value}") from None
    if n < 1:
        raise argparse.ArgumentTypeError(f"Must be >= 1: {value}")
    return n


def _handle_error(err: Exception, *, parser: argparse.ArgumentParser) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    if not isinstance(err, IndelScanError):
        logging.getLogger("indelscan").debug("Unexpected failure", exc_info=err)

    sys.stderr.write(parser.format_usage())
    sys.stderr.write(msg + "\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="indelscan",
        description=(
            "indelscan: report insertions and deletions supported by at least two reads "
            "at the same reference coordinate in a SAM/BAM/CRAM alignment file."
        ),
    )
    p.add_argument("--version", action="version", version=f"indelscan {__version__}")

    p.add_argument("alignments", help="Input alignment file (SAM/BAM/CRAM). Read in one forward scan.")
    p.add_argument(
        "-o",
        "--outdir",
        default=".",
        help="Directory for insertions.txt and deletions.txt (default: working directory).",
    )
    p.add_argument(
        "-t",
        "--threads",
        type=_positive_int,
        default=None,
        help=f"Worker threads walking CIGARs (default: CPU count, here {default_threads()}).",
    )
    p.add_argument(
        "--queue-size",
        type=_positive_int,
        default=None,
        help="Capacity of the record queue between reader and workers (default: --threads).",
    )
    p.add_argument(
        "--min-support",
        type=_positive_int,
        default=2,
        help="Minimum number of supporting reads for an indel to be reported.",
    )
    p.add_argument(
        "--skip-unmapped",
        action="store_true",
        help="Skip reads without a reference position instead of failing.",
    )
    p.add_argument("--summary-json", default=None, help="Also write a JSON run summary to this path.")
    p.add_argument(
        "--html-report",
        action="store_true",
        help="Also write report.html and plots/ into --outdir.",
    )
    p.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")
    p.add_argument("--log-file", default=None, help="Also write log messages to this file.")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.verbose, logfile=Path(args.log_file) if args.log_file else None)
    logger = logging.getLogger("indelscan")
    logger.info("indelscan %s", __version__)

    try:
        summary = run_indel_scan(
            args.alignments,
            outdir=args.outdir,
            threads=args.threads,
            queue_size=args.queue_size,
            min_support=int(args.min_support),
            skip_unmapped=bool(args.skip_unmapped),
            progress=not bool(args.no_progress),
            summary_json=args.summary_json,
            html_report=bool(args.html_report),
        )
    except Exception as e:
        return _handle_error(e, parser=parser)

    print(summary["insertions_path"])
    print(summary["deletions_path"])
    if "html_report" in summary:
        print(summary["html_report"])
    return 0


def build_toy_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="indelscan-make-toy-data",
        description="Generate a tiny alignment file with known recurrent indels for demos/tests.",
    )
    p.add_argument("-o", "--outdir", required=True, help="Output directory for toy data.")
    p.add_argument("--sam", action="store_true", help="Write SAM text instead of BAM.")
    p.add_argument(
        "--include-unmapped", action="store_true", help="Append one unmapped read (fatal without --skip-unmapped)."
    )
    p.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")
    return p


def toy_main(argv: Optional[list[str]] = None) -> int:
    parser = build_toy_parser()
    args = parser.parse_args(argv)

    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    try:
        summary = make_toy_data(
            outdir=outdir,
            filename="toy.sam" if args.sam else "toy.bam",
            include_unmapped=bool(args.include_unmapped),
        )
    except Exception as e:
        return _handle_error(e, parser=parser)

    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
