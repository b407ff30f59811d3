import shutil
import subprocess
import sys
from pathlib import Path

from afmix.toy_data import make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "afmix"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def test_cli_help() -> None:
    cp = _run_cli(["--help"])
    assert cp.returncode == 0
    assert "afmix" in cp.stdout.lower()


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "afmix call" in cp.stdout
    assert "afmix make-toy-data" in cp.stdout


def test_selftest() -> None:
    cp = _run_cli(["selftest"])
    assert cp.returncode == 0
    assert "50% Het : A C" in cp.stdout
    assert "10% Het : A C" in cp.stdout
    assert "FAILED" not in cp.stdout


def test_call_dry_run_does_not_write_outputs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "calls"
    cp = _run_cli(["call", "--bam", toy["bam"], "--ref", toy["ref_fa"], "--outdir", str(outdir), "--dry-run"])
    assert cp.returncode == 0
    assert "Dry-run" in cp.stdout
    assert not (outdir / "summary.json").exists()


def test_make_toy_data_and_call(tmp_path: Path) -> None:
    toy_dir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(toy_dir)])
    assert cp.returncode == 0

    outdir = tmp_path / "out"
    cp = _run_cli(
        [
            "call",
            "--bam",
            str(toy_dir / "toy.bam"),
            "--ref",
            str(toy_dir / "toy_ref.fa"),
            "--outdir",
            str(outdir),
            "-v",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "calls.gff").exists()
    assert (outdir / "summary.json").exists()
    assert (outdir / "report.html").exists()
    assert (outdir / "plots" / "lod_hist.png").exists()
    assert (outdir / "logs" / "call.log").exists()
    assert str(outdir / "report.html") in cp.stdout


def test_call_to_stdout(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        [
            "call",
            "--bam",
            toy["bam"],
            "--ref",
            toy["ref_fa"],
            "--outdir",
            str(tmp_path / "out"),
            "--region",
            f"chr1:{toy['hom_site']}-{toy['hom_site']}",
            "--out",
            "-",
            "--no-report",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    lines = cp.stdout.strip().splitlines()
    assert len(lines) == 1
    assert lines[0].startswith(f"chr1\tCALLER\tVARIANT\t{toy['hom_site']}\t{toy['hom_site']}\t")


def test_invalid_thresholds_exit_code(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        [
            "call",
            "--bam",
            toy["bam"],
            "--ref",
            toy["ref_fa"],
            "--outdir",
            str(tmp_path / "out"),
            "--ref-lod",
            "6",
        ]
    )
    assert cp.returncode == 2
    assert "InvalidConfiguration:" in cp.stderr


def test_unindexed_bam_message(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    bare = tmp_path / "bare"
    bare.mkdir()
    shutil.copy(toy["bam"], bare / "reads.bam")
    cp = _run_cli(
        [
            "call",
            "--bam",
            str(bare / "reads.bam"),
            "--ref",
            toy["ref_fa"],
            "--outdir",
            str(tmp_path / "out"),
        ]
    )
    assert cp.returncode == 2
    assert "BAM is not indexed" in cp.stderr


def test_region_on_unknown_contig(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        [
            "call",
            "--bam",
            toy["bam"],
            "--ref",
            toy["ref_fa"],
            "--outdir",
            str(tmp_path / "out"),
            "--region",
            "chr9:1-10",
        ]
    )
    assert cp.returncode == 2
    assert "Region contig" in cp.stderr
