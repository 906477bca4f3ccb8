import json
from pathlib import Path

import pytest

from indelscan.cigar import parse_cigar_string
from indelscan.errors import DecodeError, InputOpenError, OutputWriteError, UnmappedReadError
from indelscan.models import UNMAPPED, AlignmentRecord
from indelscan.pipeline import IndelPipeline, run_indel_scan
from indelscan.report import iter_report_rows
from indelscan.source import iter_alignment_records
from indelscan.toy_data import make_toy_data

EXPECTED_INSERTIONS = (
    "ref_start\tinsertion\tsamples\n"
    "16\tAC\tins_ac_1|ins_ac_2\n"
    "16\tGT\tins_gt_1|ins_gt_2\n"
    "106\tT\tclip_1|clip_2\n"
)
EXPECTED_DELETIONS = "ref_start\tlength\tsamples\n" "5\t3\tdel_1|del_2\n"


SAM_HEADER = "@HD\tVN:1.6\tSO:unsorted\n@SQ\tSN:chr1\tLN:200\n"


def write_sam(path: Path, lines) -> Path:
    body = "".join("\t".join(str(f) for f in fields) + "\n" for fields in lines)
    path.write_text(SAM_HEADER + body, encoding="utf-8")
    return path


def rec(name: str, start: int, cigar: str, seq: str) -> AlignmentRecord:
    return AlignmentRecord(
        read_id=name, reference_start=start, query_sequence=seq, operations=parse_cigar_string(cigar)
    )


def _many_records(n: int):
    out = []
    for i in range(n):
        # every fourth read shares one insertion, every read a deletion at one of 3 sites
        bases = "AC" if i % 4 == 0 else "G" * (1 + i % 3)
        out.append(rec(f"read{i:04d}", 10 * (i % 7), "5M%dI3M2D4M" % len(bases), "ACGTA" + bases + "CGTACGT"))
    return out


def _rows(result):
    return (
        list(iter_report_rows(result.insertions, min_support=1)),
        list(iter_report_rows(result.deletions, min_support=1)),
    )


def test_two_reads_same_insertion_are_reported():
    records = [
        rec("id1", 10, "5M2I3M", "ACGTAACGTA"),
        rec("id2", 10, "5M2I3M", "ACGTAACGTA"),
        rec("id3", 30, "5M2I3M", "ACGTAGGGTA"),
    ]
    result = IndelPipeline(lambda: iter(records), threads=2).run()

    assert list(iter_report_rows(result.insertions)) == [(16, "AC", ["id1", "id2"])]
    assert list(iter_report_rows(result.deletions)) == []
    assert result.counts["records"] == 3
    assert result.counts["insertion_events"] == 3


def test_two_reads_same_deletion_are_reported():
    records = [rec("id1", 0, "4M3D4M", "ACGTACGT"), rec("id2", 0, "4M3D4M", "ACGTACGT")]
    result = IndelPipeline(lambda: records, threads=3).run()
    assert list(iter_report_rows(result.deletions)) == [(5, 3, ["id1", "id2"])]


@pytest.mark.parametrize("threads,queue_size", [(1, 1), (3, 1), (8, 2), (4, None)])
def test_result_does_not_depend_on_parallelism(threads, queue_size):
    records = _many_records(300)
    baseline = _rows(IndelPipeline(lambda: records, threads=1, queue_size=1).run())
    result = IndelPipeline(lambda: records, threads=threads, queue_size=queue_size).run()
    assert _rows(result) == baseline
    assert result.counts["records"] == 300
    assert result.counts["records_read"] == 300
    assert result.counts["deletion_events"] == 300


def test_empty_source():
    result = IndelPipeline(lambda: [], threads=2).run()
    assert _rows(result) == ([], [])
    assert result.counts["records_read"] == 0


def test_unmapped_read_fails_the_run():
    records = [rec("ok", 0, "4M3D4M", "ACGTACGT"), rec("lost", UNMAPPED, "4M", "ACGT")]
    pipeline = IndelPipeline(lambda: records, threads=2)
    with pytest.raises(UnmappedReadError) as exc:
        pipeline.run()
    assert exc.value.read_id == "lost"
    assert not any(s.is_alive() for s in pipeline._stages)


def test_skip_unmapped_counts_and_continues():
    records = [rec("ok", 0, "4M3D4M", "ACGTACGT"), rec("lost", UNMAPPED, "2I", "")]
    result = IndelPipeline(lambda: records, threads=2, skip_unmapped=True).run()
    assert result.counts["unmapped_skipped"] == 1
    assert result.counts["records"] == 1
    assert list(iter_report_rows(result.deletions, min_support=1)) == [(5, 3, ["ok"])]


def test_source_error_cancels_pipeline():
    def source():
        for r in _many_records(50):
            yield r
        raise DecodeError("bad record 51")

    pipeline = IndelPipeline(source, threads=4, queue_size=1)
    with pytest.raises(DecodeError, match="bad record 51"):
        pipeline.run()
    assert pipeline.ctx.cancelled
    assert not any(s.is_alive() for s in pipeline._stages)


def test_invalid_parameters():
    with pytest.raises(ValueError):
        IndelPipeline(lambda: [], threads=0)
    with pytest.raises(ValueError):
        IndelPipeline(lambda: [], threads=1, queue_size=0)


@pytest.mark.parametrize("filename", ["toy.bam", "toy.sam"])
def test_run_indel_scan_on_toy_data(tmp_path: Path, filename: str):
    toy = make_toy_data(outdir=tmp_path / "toy", filename=filename)
    outdir = tmp_path / "out"

    summary = run_indel_scan(toy["alignments"], outdir=outdir, threads=3, progress=False)

    assert (outdir / "insertions.txt").read_text(encoding="utf-8") == EXPECTED_INSERTIONS
    assert (outdir / "deletions.txt").read_text(encoding="utf-8") == EXPECTED_DELETIONS
    assert summary["counts"]["records_read"] == 11
    assert summary["counts"]["recurrent_insertions"] == 3
    assert summary["counts"]["recurrent_deletions"] == 1


def test_run_indel_scan_is_deterministic(tmp_path: Path):
    toy = make_toy_data(outdir=tmp_path / "toy")
    outputs = []
    for threads in (1, 2, 8):
        outdir = tmp_path / f"out{threads}"
        run_indel_scan(toy["alignments"], outdir=outdir, threads=threads, progress=False)
        outputs.append(
            ((outdir / "insertions.txt").read_bytes(), (outdir / "deletions.txt").read_bytes())
        )
    assert outputs[0] == outputs[1] == outputs[2]


def test_run_indel_scan_unmapped(tmp_path: Path):
    toy = make_toy_data(outdir=tmp_path / "toy", include_unmapped=True)

    with pytest.raises(UnmappedReadError):
        run_indel_scan(toy["alignments"], outdir=tmp_path / "fail", threads=2, progress=False)
    assert not (tmp_path / "fail" / "insertions.txt").exists()

    summary = run_indel_scan(
        toy["alignments"], outdir=tmp_path / "ok", threads=2, progress=False, skip_unmapped=True
    )
    assert summary["counts"]["unmapped_skipped"] == 1
    assert (tmp_path / "ok" / "deletions.txt").read_text(encoding="utf-8") == EXPECTED_DELETIONS


def test_summary_json_and_html_report(tmp_path: Path):
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "out"
    summary_path = tmp_path / "summary.json"

    summary = run_indel_scan(
        toy["alignments"],
        outdir=outdir,
        threads=2,
        progress=False,
        summary_json=summary_path,
        html_report=True,
    )

    data = json.loads(summary_path.read_text(encoding="utf-8"))
    assert data["counts"]["insertion_events"] == 7
    assert data["counts"]["deletion_events"] == 3
    assert data["min_support"] == 2
    # insertions: four of length 2, three of length 1
    assert data["insertion_length_hist"]["counts"][:2] == [3, 4]
    assert data["deletion_length_hist"]["counts"][:3] == [0, 1, 2]
    assert Path(summary["html_report"]).exists()
    assert (outdir / "plots" / "indel_lengths.png").exists()


def test_missing_input(tmp_path: Path):
    with pytest.raises(InputOpenError):
        run_indel_scan(tmp_path / "nope.bam", outdir=tmp_path, threads=1, progress=False)


def test_iter_alignment_records_missing_file(tmp_path: Path):
    with pytest.raises(InputOpenError):
        list(iter_alignment_records(tmp_path / "nope.sam"))


def test_iter_alignment_records_toy(tmp_path: Path):
    toy = make_toy_data(outdir=tmp_path, filename="toy.sam")
    records = list(iter_alignment_records(toy["alignments"]))
    assert len(records) == 11
    assert records[0].read_id == "ins_ac_1"
    assert records[0].reference_start == 10


def test_unwritable_outdir(tmp_path: Path):
    toy = make_toy_data(outdir=tmp_path / "toy")
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    with pytest.raises(OutputWriteError):
        run_indel_scan(toy["alignments"], outdir=blocker / "out", threads=1, progress=False)


def test_min_support_validation(tmp_path: Path):
    with pytest.raises(ValueError):
        run_indel_scan(tmp_path / "x.bam", outdir=tmp_path, min_support=0, progress=False)


def test_secondary_alignment_without_seq_is_not_fatal(tmp_path: Path):
    sam = write_sam(
        tmp_path / "secondary.sam",
        [
            ("a", 0, "chr1", 11, 60, "5M2I3M", "*", 0, 0, "ACGTAACGTA", "IIIIIIIIII"),
            ("b", 0, "chr1", 11, 60, "5M2I3M", "*", 0, 0, "ACGTAACGTA", "IIIIIIIIII"),
            ("a", 256, "chr1", 11, 0, "5M2I3M", "*", 0, 0, "*", "*"),
            ("b", 256, "chr1", 31, 0, "4M3D4M", "*", 0, 0, "*", "*"),
            ("c", 0, "chr1", 31, 60, "4M3D4M", "*", 0, 0, "ACGTACGT", "IIIIIIII"),
        ],
    )
    outdir = tmp_path / "out"

    summary = run_indel_scan(sam, outdir=outdir, threads=2, progress=False)

    assert (outdir / "insertions.txt").read_text(encoding="utf-8") == (
        "ref_start\tinsertion\tsamples\n" "16\tAC\ta|b\n"
    )
    assert (outdir / "deletions.txt").read_text(encoding="utf-8") == (
        "ref_start\tlength\tsamples\n" "35\t3\tb|c\n"
    )
    assert summary["counts"]["records"] == 5
    assert summary["counts"]["missing_seq"] == 1
    assert summary["counts"]["insertion_events"] == 2


def test_seq_shorter_than_cigar_is_decode_error(tmp_path: Path):
    sam = write_sam(
        tmp_path / "short.sam",
        [("a", 0, "chr1", 11, 60, "5M2I3M", "*", 0, 0, "ACGTAAC", "IIIIIII")],
    )
    with pytest.raises(DecodeError):
        run_indel_scan(sam, outdir=tmp_path / "out", threads=1, progress=False)


def test_undecodable_record_is_decode_error(tmp_path: Path):
    sam = write_sam(
        tmp_path / "bad.sam",
        [("a", 0, "chr1", "NOTANINT", 60, "4M", "*", 0, 0, "ACGT", "IIII")],
    )
    with pytest.raises(DecodeError, match="record 1"):
        list(iter_alignment_records(sam))
    with pytest.raises(DecodeError):
        run_indel_scan(sam, outdir=tmp_path / "out", threads=2, progress=False)
    assert not (tmp_path / "out" / "insertions.txt").exists()
