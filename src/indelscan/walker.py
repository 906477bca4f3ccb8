from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from .cigar import apply_operation, query_length
from .errors import DecodeError, UnmappedReadError
from .models import AlignmentRecord, CigarOp, DeletionEvent, InsertionEvent


@dataclass
class IndelWalk:
    """Indel events found in one record plus the offsets reached at its end."""

    insertions: List[InsertionEvent] = field(default_factory=list)
    deletions: List[DeletionEvent] = field(default_factory=list)
    query_offset: int = 0
    reference_offset: int = 0
    # insertion ops dropped because the record stores no SEQ ("*")
    insertions_without_seq: int = 0


def walk_indels(record: AlignmentRecord) -> IndelWalk:
    """Walk a record's CIGAR once and collect its insertion and deletion events.

    Events are captured with the reference cursor as it stood *before* the
    operation is applied. For insertions this is also the cursor after it, since
    an insertion never consumes reference. Events come out in CIGAR order, so
    their coordinates are non-decreasing within a record.

    Records stored without SEQ (``*``, common for secondary alignments) still
    yield their deletions; their insertions have no bases to report and are
    only counted in ``insertions_without_seq``.

    Raises
    ------
    UnmappedReadError
        If the record has no reference placement. No operation is inspected.
    DecodeError
        If a non-empty SEQ is shorter than the bases the CIGAR reads.
    """
    if record.is_unmapped:
        raise UnmappedReadError(record.read_id)

    seq = record.query_sequence
    if seq:
        needed = query_length(record.operations)
        if len(seq) < needed:
            raise DecodeError(
                f"Read {record.read_id}: SEQ of length {len(seq)} is shorter than "
                f"the {needed} bases its CIGAR reads",
                read_id=record.read_id,
            )

    walk = IndelWalk(query_offset=0, reference_offset=record.reference_start)

    for op in record.operations:
        qpos = walk.query_offset
        rpos = walk.reference_offset

        if op.kind == CigarOp.INSERT:
            if seq:
                walk.insertions.append(
                    InsertionEvent(
                        read_id=record.read_id,
                        reference_anchor=rpos,
                        inserted_bases=seq[qpos : qpos + op.length],
                    )
                )
            else:
                walk.insertions_without_seq += 1
        elif op.kind == CigarOp.DELETE:
            walk.deletions.append(
                DeletionEvent(read_id=record.read_id, reference_start=rpos, length=op.length)
            )

        walk.query_offset, walk.reference_offset, _ = apply_operation(
            op.kind, qpos, rpos, op.length, seq
        )

    return walk
