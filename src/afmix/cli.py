from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .calibration import format_selftest, run_selftest
from .caller import call_variants
from .config import DEFAULT_Q_STEP, DEFAULT_REF_LOD_THRESHOLD, DEFAULT_VARIANT_LOD_THRESHOLD, CallerConfig
from .pileup_source import PileupFilters, parse_region
from .plotting import plot_call_counts, plot_depth_hist, plot_lod_hist
from .report import render_report
from .toy_data import make_toy_data
from .validation import bam_contigs, check_bam_index, check_contigs, check_fasta_index, fasta_contigs


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


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    if log_path is not None:
        logging.getLogger("afmix").error(msg)

    sys.stderr.write(msg + "\n")
    if log_path is not None and log_path.exists():
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="afmix",
        description=(
            "afmix: Bayesian allele-fraction estimation and confident-region calling "
            "from aligned reads (BAM + reference FASTA)."
        ),
    )
    p.add_argument("--version", action="version", version=f"afmix {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny reference and BAM with planted SNVs for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # selftest
    # -----------------
    s = sub.add_parser(
        "selftest",
        help="Evaluate the built-in calibration pileups and print the estimates.",
    )
    s.add_argument("--q-step", type=float, default=DEFAULT_Q_STEP, help="Step of the q grid.")
    s.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # call
    # -----------------
    c = sub.add_parser(
        "call",
        help="Estimate allele fractions at every covered locus and emit reference intervals and variants.",
    )
    c.add_argument("--bam", required=True, type=_path_exists, help="Input BAM (sorted, indexed).")
    c.add_argument("--ref", required=True, type=_path_exists, help="Reference FASTA (faidx indexed).")
    c.add_argument("--outdir", required=True, help="Output directory.")
    c.add_argument(
        "--out",
        default=None,
        help="Path for call records (.gz allowed; '-' for stdout). Default: outdir/calls.gff.",
    )
    c.add_argument("--region", default=None, help="Restrict to contig[:start-end] (1-based, inclusive).")

    # Model
    c.add_argument(
        "-N",
        "--n-chromosomes",
        type=int,
        default=2,
        help="Number of chromosomes in the data (ploidy x samples).",
    )
    c.add_argument(
        "--ref-lod",
        type=float,
        default=DEFAULT_REF_LOD_THRESHOLD,
        help="LOD <= this => confidently reference.",
    )
    c.add_argument(
        "--variant-lod",
        type=float,
        default=DEFAULT_VARIANT_LOD_THRESHOLD,
        help="LOD >= this => emit a variant record.",
    )
    c.add_argument("--q-step", type=float, default=DEFAULT_Q_STEP, help="Step of the q grid.")
    c.add_argument(
        "--downsample",
        type=int,
        default=0,
        help="Randomly downsample deeper loci to this many reads (0 = off).",
    )
    c.add_argument("--seed", type=int, default=0, help="Seed for downsampling.")
    c.add_argument(
        "--force-1base-probs",
        action="store_true",
        help="Ignore secondary-quality (SQ) annotations.",
    )

    # Read filters
    c.add_argument("--min-baseq", type=int, default=0, help="Minimum base quality.")
    c.add_argument("--min-mapq", type=int, default=0, help="Minimum mapping quality.")
    c.add_argument("--keep-duplicates", action="store_true", help="Do not skip duplicate reads.")
    c.add_argument("--include-secondary", action="store_true", help="Include secondary alignments.")
    c.add_argument(
        "--include-supplementary", action="store_true", help="Include supplementary alignments."
    )

    # Execution / outputs
    c.add_argument("--workers", type=int, default=1, help="Processes used for estimation.")
    c.add_argument("--no-report", action="store_true", help="Skip plots and the HTML report.")
    c.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    c.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")
    c.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "afmix quickstart (copy/paste):",
        "",
        "1) Try it on toy data:",
        "   afmix make-toy-data --outdir toy/",
        "   afmix call --bam toy/toy.bam --ref toy/toy_ref.fa --outdir toy_calls/",
        "   Outputs: toy_calls/calls.gff, toy_calls/summary.json, toy_calls/report.html",
        "",
        "2) Diploid sample, one region, 4 processes:",
        "   afmix call \\",
        "     --bam sample.bam \\",
        "     --ref ref.fa \\",
        "     --region chr20:1,000,000-2,000,000 \\",
        "     --workers 4 \\",
        "     --outdir results/",
        "",
        "3) Pool of 5 diploid samples in one BAM (N = 10), calls to stdout:",
        "   afmix call --bam pool.bam --ref ref.fa -N 10 --out - --no-report --outdir pool/",
        "",
        "Tip: use --dry-run to validate inputs, and 'afmix selftest' to check the model.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    try:
        summary = make_toy_data(outdir=outdir)
    except Exception as e:
        return _handle_error(e)
    print(json.dumps(summary, indent=2))
    return 0


def cmd_selftest(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose)
    try:
        result = run_selftest(q_step=float(args.q_step))
    except Exception as e:
        return _handle_error(e)
    print(format_selftest(result))
    return 0 if result["ok"] else 1


def _config_from_args(args: argparse.Namespace) -> CallerConfig:
    return CallerConfig(
        n_chromosomes=int(args.n_chromosomes),
        ref_lod_threshold=float(args.ref_lod),
        variant_lod_threshold=float(args.variant_lod),
        q_step=float(args.q_step),
        downsample=int(args.downsample),
        force_single_base_probs=bool(args.force_1base_probs),
        seed=int(args.seed),
    )


def _filters_from_args(args: argparse.Namespace) -> PileupFilters:
    return PileupFilters(
        min_baseq=int(args.min_baseq),
        min_mapq=int(args.min_mapq),
        skip_duplicates=not bool(args.keep_duplicates),
        include_secondary=bool(args.include_secondary),
        include_supplementary=bool(args.include_supplementary),
    )


def cmd_call(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "call.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("afmix")
    logger.info("afmix %s", __version__)

    try:
        config = _config_from_args(args)
        filters = _filters_from_args(args)
        if args.workers < 1:
            raise ValueError(f"--workers must be >= 1, got {args.workers}")

        check_bam_index(args.bam)
        check_fasta_index(args.ref)
        region_contig = parse_region(args.region)[0] if args.region else None
        shared = check_contigs(bam_contigs(args.bam), fasta_contigs(args.ref), region_contig=region_contig)

        calls_path = args.out if args.out is not None else str(outdir / "calls.gff")

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Shared contigs: {len(shared)}")
            print(f"Config: {json.dumps(config.to_dict(), sort_keys=True)}")
            print("Planned outputs:")
            print(f"  calls -> {calls_path}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            if not args.no_report:
                print(f"  report.html -> {outdir / 'report.html'}")
            return 0

        if args.resume and (outdir / "summary.json").exists():
            logger.info("Resume enabled: summary.json already exists in %s", outdir)
            if args.out != "-":
                print(str(outdir / "report.html"))
            return 0

        run = call_variants(
            bam_path=args.bam,
            ref_path=args.ref,
            outdir=outdir,
            config=config,
            filters=filters,
            region=args.region,
            out_path=calls_path,
            workers=int(args.workers),
            progress=True,
        )

        if args.no_report:
            if args.out != "-":
                print(calls_path)
            return 0

        plots_dir = outdir / "plots"
        plots_dir.mkdir(parents=True, exist_ok=True)

        lod_png = plots_dir / "lod_hist.png"
        counts_png = plots_dir / "call_counts.png"
        depth_png = plots_dir / "depth_hist.png"

        plot_lod_hist(
            bin_edges=run["lod_hist"]["bin_edges"],
            counts=run["lod_hist"]["counts"],
            out_png=lod_png,
            ref_lod_threshold=config.ref_lod_threshold,
            variant_lod_threshold=config.variant_lod_threshold,
        )
        plot_call_counts(counts=run["counts"], out_png=counts_png)
        plot_depth_hist(depth_hist=run["depth_hist"], out_png=depth_png)

        plots_rel = {
            "lod_hist": str(Path("plots") / lod_png.name),
            "call_counts": str(Path("plots") / counts_png.name),
            "depth_hist": str(Path("plots") / depth_png.name),
        }

        report_path = render_report(outdir=outdir, version=__version__, run=run, plots=plots_rel)

        logger.info("Report written: %s", report_path)
        if args.out != "-":
            print(str(report_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=None if args.dry_run else log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "selftest":
        return cmd_selftest(args)
    if args.cmd == "call":
        return cmd_call(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
