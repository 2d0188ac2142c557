from __future__ import annotations

import argparse
import json
import logging
import sys

from .config import PipelineConfig
from .pipeline import run_pipeline


def _cfg_from_args(args: argparse.Namespace) -> PipelineConfig:
    cfg = PipelineConfig(
        group_columns=list(args.group_column),
        output_dir=args.output_dir,
        run_tag=args.run_tag,
        n_jobs=int(args.jobs),
    )
    if args.df:
        cfg.complexities = [int(k) for k in args.df]
    if args.ratio_ceiling is not None:
        cfg.transform.ratio_ceiling = float(args.ratio_ceiling)
    if args.absolute_ceiling is not None:
        cfg.transform.absolute_ceiling = float(args.absolute_ceiling)
    cfg.plot.enabled = not args.no_plots
    cfg.__post_init__()
    return cfg


def _cmd_run(args: argparse.Namespace) -> int:
    cfg = _cfg_from_args(args)
    out = run_pipeline(input_path=args.input, cfg=cfg)
    print(json.dumps(out, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="agetrend", description="Weighted age-trend meta-regression by condition")
    p.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    sub = p.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Fit age curves per condition group and export tables and figures")
    run.add_argument("--input", required=True, help="Effect-size table (csv/xlsx)")
    run.add_argument(
        "--group-column",
        action="append",
        required=True,
        help="Condition column to group by; repeat for several columns",
    )
    run.add_argument("--df", type=int, action="append", help="Smoothing complexity; repeat to sweep (default 3, 4, 5)")
    run.add_argument("--output-dir", default="runs", help="Root output directory")
    run.add_argument("--run-tag", default="age_trend", help="Run tag written under the output directory")
    run.add_argument("--jobs", type=int, default=1, help="Worker processes shared by the whole sweep")
    run.add_argument("--ratio-ceiling", type=float, default=None, help="Log-scale ceiling for ratio effects")
    run.add_argument("--absolute-ceiling", type=float, default=None, help="Ceiling for non-ratio effects")
    run.add_argument("--no-plots", action="store_true", help="Skip chart rendering")
    run.set_defaults(func=_cmd_run)

    return p


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not hasattr(args, "func"):
        parser.print_help()
        return 2
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
