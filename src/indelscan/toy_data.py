from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pysam

from .cigar import parse_cigar_string
from .models import CigarOp
from .utils import ensure_outdir, write_json

TOY_CONTIG = "chr1"
TOY_REF_SEQ = ("ACGTTGCA" * 25)[:200]

# (name, 0-based start, CIGAR, inserted bases per I op in order)
_TOY_READS: List[Tuple[str, int, str, List[str]]] = [
    ("ins_ac_1", 10, "5M2I3M", ["AC"]),
    ("ins_ac_2", 10, "5M2I3M", ["AC"]),
    ("ins_gt_1", 10, "5M2I3M", ["GT"]),
    ("ins_gt_2", 10, "5M2I3M", ["GT"]),
    ("ins_single", 40, "3M1I3M", ["G"]),
    ("del_1", 0, "4M3D4M", []),
    ("del_2", 0, "4M3D4M", []),
    ("del_single", 60, "4M2D4M", []),
    ("clip_1", 100, "2S5M1I2M4N3M2H", ["T"]),
    ("clip_2", 100, "2S5M1I2M4N3M2H", ["T"]),
    ("plain", 150, "10M", []),
]


def _query_for(start0: int, cigar: str, inserted: List[str]) -> str:
    """Build a read sequence that matches the toy reference except for insertions/soft clips."""
    seq: List[str] = []
    rpos = start0
    ins_iter = iter(inserted)
    for op in parse_cigar_string(cigar):
        if op.kind in (CigarOp.ALIGN_MATCH, CigarOp.SEQ_MATCH, CigarOp.SEQ_MISMATCH):
            seq.append(TOY_REF_SEQ[rpos : rpos + op.length])
            rpos += op.length
        elif op.kind == CigarOp.INSERT:
            seq.append(next(ins_iter))
        elif op.kind == CigarOp.SOFT_CLIP:
            seq.append("N" * op.length)
        elif op.kind in (CigarOp.DELETE, CigarOp.REF_SKIP):
            rpos += op.length
    return "".join(seq)


def _make_read(
    name: str,
    start0: Optional[int],
    cigar: Optional[str],
    seq: str,
    mapq: int = 60,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    if start0 is None:
        a.flag = 4
        a.reference_id = -1
        a.reference_start = -1
        a.mapping_quality = 0
    else:
        a.flag = 0
        a.reference_id = 0
        a.reference_start = start0
        a.mapping_quality = mapq
        a.cigartuples = [(int(op.kind), op.length) for op in parse_cigar_string(cigar or "")]
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    return a


def make_toy_data(
    *,
    outdir: str | Path,
    filename: str = "toy.bam",
    include_unmapped: bool = False,
) -> Dict[str, str]:
    """Write a tiny alignment file with known recurrent indels for demos/tests.

    The file is BAM when ``filename`` ends in ``.bam`` and SAM otherwise.
    Expected reports (1-based coordinates):

    - insertions.txt: ``16 AC ins_ac_1|ins_ac_2``, ``16 GT ins_gt_1|ins_gt_2``,
      ``106 T clip_1|clip_2``
    - deletions.txt: ``5 3 del_1|del_2``

    ``include_unmapped`` appends one unplaced read named ``unmapped_1``.

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)
    path = outdir_p / filename
    mode = "wb" if filename.endswith(".bam") else "w"

    header = {
        "HD": {"VN": "1.6", "SO": "unsorted"},
        "SQ": [{"SN": TOY_CONTIG, "LN": len(TOY_REF_SEQ)}],
    }

    reads = [
        _make_read(name, start0, cigar, _query_for(start0, cigar, inserted))
        for name, start0, cigar, inserted in _TOY_READS
    ]
    if include_unmapped:
        reads.append(_make_read("unmapped_1", None, None, TOY_REF_SEQ[:12]))

    with pysam.AlignmentFile(str(path), mode, header=header) as out:
        for r in reads:
            out.write(r)

    summary = {
        "alignments": str(path),
        "outdir": str(outdir_p),
        "reads": str(len(reads)),
    }
    write_json(outdir_p / "toy_summary.json", summary)
    return summary
