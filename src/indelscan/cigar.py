from __future__ import annotations

import re
from typing import Tuple

from .errors import DecodeError
from .models import AlignmentOperation, CigarOp

DELETION_FILLER = "-"
REF_SKIP_FILLER = "*"

_CIGAR_CHARS = {
    "M": CigarOp.ALIGN_MATCH,
    "I": CigarOp.INSERT,
    "D": CigarOp.DELETE,
    "N": CigarOp.REF_SKIP,
    "S": CigarOp.SOFT_CLIP,
    "H": CigarOp.HARD_CLIP,
    "P": CigarOp.PAD,
    "=": CigarOp.SEQ_MATCH,
    "X": CigarOp.SEQ_MISMATCH,
}

_CIGAR_TOKEN = re.compile(r"(\d+)([MIDNSHP=X])")


def apply_operation(
    kind: CigarOp,
    query_offset: int,
    reference_offset: int,
    length: int,
    query_sequence: str,
) -> Tuple[int, int, str]:
    """Advance (query, reference) offsets across one CIGAR operation.

    Returns ``(new_query_offset, new_reference_offset, consumed)`` where
    ``consumed`` is the query slice for aligned operations, a run of
    ``DELETION_FILLER`` / ``REF_SKIP_FILLER`` for reference-only operations and
    an empty string otherwise.
    """
    if kind in (CigarOp.ALIGN_MATCH, CigarOp.SEQ_MATCH, CigarOp.SEQ_MISMATCH):
        consumed = query_sequence[query_offset : query_offset + length]
        return query_offset + length, reference_offset + length, consumed
    elif kind in (CigarOp.INSERT, CigarOp.SOFT_CLIP):
        return query_offset + length, reference_offset, ""
    elif kind == CigarOp.DELETE:
        return query_offset, reference_offset + length, DELETION_FILLER * length
    elif kind == CigarOp.REF_SKIP:
        return query_offset, reference_offset + length, REF_SKIP_FILLER * length
    elif kind in (CigarOp.HARD_CLIP, CigarOp.PAD):
        return query_offset, reference_offset, ""
    # CigarOp is closed; reaching here means a new member was added without a branch.
    raise AssertionError(f"Unhandled CIGAR operation: {kind!r}")


def to_operation(code: int, length: int, *, read_id: str | None = None) -> AlignmentOperation:
    """Build an AlignmentOperation from a pysam ``(code, length)`` cigartuple."""
    try:
        kind = CigarOp(code)
    except ValueError:
        raise DecodeError(f"Unsupported CIGAR operation code {code}", read_id=read_id) from None
    if length < 0:
        raise DecodeError(f"Negative CIGAR operation length {length}", read_id=read_id)
    return AlignmentOperation(kind=kind, length=int(length))


def parse_cigar_string(cigar: str) -> Tuple[AlignmentOperation, ...]:
    """Parse CIGAR text such as ``5M2I3M``; ``*`` or ``""`` means no operations."""
    if cigar in ("", "*"):
        return ()

    ops = []
    pos = 0
    for m in _CIGAR_TOKEN.finditer(cigar):
        if m.start() != pos:
            break
        ops.append(AlignmentOperation(kind=_CIGAR_CHARS[m.group(2)], length=int(m.group(1))))
        pos = m.end()

    if pos != len(cigar):
        raise DecodeError(f"Malformed CIGAR string: {cigar!r}")
    return tuple(ops)


def query_length(operations: Tuple[AlignmentOperation, ...]) -> int:
    """Number of SEQ bases a list of operations reads (hard clips excluded)."""
    query_consuming = (
        CigarOp.ALIGN_MATCH,
        CigarOp.INSERT,
        CigarOp.SOFT_CLIP,
        CigarOp.SEQ_MATCH,
        CigarOp.SEQ_MISMATCH,
    )
    return sum(op.length for op in operations if op.kind in query_consuming)
