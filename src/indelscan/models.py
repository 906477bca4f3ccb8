from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Tuple

# reference_start value pysam reports for reads without a placement
UNMAPPED = -1


class CigarOp(IntEnum):
    """CIGAR operation kinds, numbered as in BAM records and pysam's cigartuples."""

    ALIGN_MATCH = 0  # M
    INSERT = 1  # I
    DELETE = 2  # D
    REF_SKIP = 3  # N
    SOFT_CLIP = 4  # S
    HARD_CLIP = 5  # H
    PAD = 6  # P
    SEQ_MATCH = 7  # =
    SEQ_MISMATCH = 8  # X


@dataclass(frozen=True)
class AlignmentOperation:
    kind: CigarOp
    length: int


@dataclass(frozen=True)
class AlignmentRecord:
    """One aligned read, detached from the pysam segment it was decoded from.

    Attributes
    ----------
    read_id:
        QNAME of the read.
    reference_start:
        0-based leftmost reference position, or a negative value (``UNMAPPED``)
        when the read has no placement.
    query_sequence:
        SEQ as stored in the file; empty when SEQ is ``*``.
    operations:
        CIGAR operations in file order.
    """

    read_id: str
    reference_start: int
    query_sequence: str
    operations: Tuple[AlignmentOperation, ...]

    @property
    def is_unmapped(self) -> bool:
        return self.reference_start < 0


@dataclass(frozen=True)
class InsertionEvent:
    """Bases present in the read but not in the reference.

    ``reference_anchor`` is the 0-based reference cursor at the insertion.
    """

    read_id: str
    reference_anchor: int
    inserted_bases: str


@dataclass(frozen=True)
class DeletionEvent:
    """Reference span ``[reference_start, reference_start + length)`` missing from the read."""

    read_id: str
    reference_start: int
    length: int
