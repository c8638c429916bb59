"""Command-line entry point: run a CSV batch or print history statistics."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from .aggregate import compute_stats, finalize
from .batch import BatchProgress
from .config import load_config
from .export import results_to_csv
from .history_store import HistoryStore
from .logging_utils import configure_logging
from .predictor import build_predictor
from .scheduler import BatchScheduler
from .validation import parse_batch_table


logger = logging.getLogger("drugbind.cli")


def _print_progress(progress: BatchProgress) -> None:
    current = f" · {progress.current_item}" if progress.current_item else ""
    logger.info(
        "[%5.1f%%] %d/%d done (%d ok, %d failed) · ETA %ds%s",
        progress.percentage, progress.completed, progress.total,
        progress.successful, progress.failed, progress.eta, current,
    )


def cmd_run(args: argparse.Namespace) -> int:
    cfg = load_config()
    text = Path(args.input).expanduser().read_text(encoding="utf-8-sig")
    parsed = parse_batch_table(text)
    for warning in parsed.warnings:
        logger.warning(warning)
    for error in parsed.errors:
        logger.error(error)
    if not parsed.rows:
        logger.error("No valid rows to process.")
        return 2

    overrides = {}
    if args.max_concurrent:
        overrides["max_concurrent"] = args.max_concurrent
    if args.timeout:
        overrides["row_timeout_seconds"] = args.timeout
    settings = replace(cfg.batch, **overrides) if overrides else cfg.batch

    scheduler = BatchScheduler(build_predictor(cfg.predictor), settings)
    results = asyncio.run(scheduler.run(parsed.rows, on_progress=_print_progress))
    summary = finalize(results)

    if args.output:
        out = Path(args.output).expanduser()
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(results_to_csv(result.to_dict() for result in results), encoding="utf-8")
        logger.info("Wrote %s", out)
    if not args.no_history and summary.records:
        HistoryStore(cfg.paths.history_path).add_many(summary.records)
        logger.info("Saved %d predictions to history", len(summary.records))

    logger.info("%d of %d predictions succeeded", summary.successful, summary.total)
    for failure in summary.failures:
        logger.info("  %s: %s", failure.row_id, failure.error)
    return 0 if summary.successful else 1


def cmd_stats(args: argparse.Namespace) -> int:
    cfg = load_config()
    stats = compute_stats(HistoryStore(cfg.paths.history_path).export_all())
    print(json.dumps(stats.model_dump(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="drugbind", description="DrugBind batch affinity prediction")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Predict every row of a CSV/TSV file")
    run.add_argument("input", help="CSV/TSV with drug_name, smiles, protein_name, fasta[, priority, id]")
    run.add_argument("-o", "--output", help="Write per-row results to this CSV")
    run.add_argument("--max-concurrent", type=int, default=None)
    run.add_argument("--timeout", type=float, default=None, help="Per-row timeout in seconds")
    run.add_argument("--no-history", action="store_true", help="Do not save successful rows to history")
    run.set_defaults(func=cmd_run)

    stats = sub.add_parser("stats", help="Print prediction history statistics as JSON")
    stats.set_defaults(func=cmd_stats)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_config()
    configure_logging(cfg.log_dir, cfg.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
