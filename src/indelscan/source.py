"""Alignment record source.

Decoding SAM/BAM/CRAM is left to pysam; this module only turns each
``pysam.AlignedSegment`` into an immutable :class:`AlignmentRecord` so that
records can be handed between threads safely, and maps pysam/htslib failures
onto :class:`InputOpenError` / :class:`DecodeError`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import pysam

from .cigar import to_operation
from .errors import DecodeError, InputOpenError
from .models import UNMAPPED, AlignmentRecord

logger = logging.getLogger(__name__)


def record_from_segment(read: pysam.AlignedSegment) -> AlignmentRecord:
    """Detach the fields the indel walk needs from a pysam segment."""
    read_id = str(read.query_name) if read.query_name is not None else "*"

    # pysam reports -1 for POS 0. Unmapped mates placed at their partner's
    # POS keep that position and carry no CIGAR, so they yield no events.
    start = read.reference_start
    if start is None or start < 0:
        start = UNMAPPED

    cigar = read.cigartuples or []
    ops = tuple(to_operation(code, length, read_id=read_id) for code, length in cigar)

    return AlignmentRecord(
        read_id=read_id,
        reference_start=int(start),
        query_sequence=read.query_sequence or "",
        operations=ops,
    )


def _open_alignment_file(path: str | Path) -> pysam.AlignmentFile:
    p = Path(path)
    if not p.exists():
        raise InputOpenError(f"Alignment file does not exist: {p}", path=p)
    try:
        # "r" lets htslib detect SAM/BAM/CRAM; check_sq=False accepts header-less SAM
        return pysam.AlignmentFile(str(p), "r", check_sq=False)
    except (OSError, ValueError) as e:
        raise InputOpenError(f"Cannot open alignment file {p}: {e}", path=p) from e


def iter_alignment_records(path: str | Path) -> Iterator[AlignmentRecord]:
    """Yield every record of an alignment file in file order.

    The file is read as one forward scan; no index is needed. The handle is
    closed when the generator is exhausted, closed early, or fails.

    Raises
    ------
    InputOpenError
        The file is missing or is not a readable alignment file.
    DecodeError
        A record could not be decoded.
    """
    bam = _open_alignment_file(path)
    n = 0
    with bam:
        it = bam.fetch(until_eof=True)
        while True:
            try:
                read = next(it)
            except StopIteration:
                break
            except (OSError, ValueError) as e:
                raise DecodeError(f"Failed to decode record {n + 1} of {path}: {e}") from e
            n += 1
            yield record_from_segment(read)

    logger.debug("Read %d records from %s", n, path)
