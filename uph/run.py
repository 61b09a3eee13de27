"""Command-line entry point: recompute UPH and inspect the published results."""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

import pandas as pd
from rich.console import Console
from rich.logging import RichHandler

from uph.config import EngineConfig, load_engine_config
from uph.engine.jobs import RecomputeService
from uph.engine.registries import FileCycleFeed, FileMORegistry, FileOperatorRegistry
from uph.engine.store import UphStore
from uph.utils.types import JobState
from uph.validation.reporters import build_run_report, frame_table, save_report

console = Console()

EXTRACT_SUFFIXES = (".csv", ".json", ".parquet")

STAT_COLUMNS = [
    "product_name",
    "category",
    "operator_name",
    "window_days",
    "average_uph",
    "mo_count",
    "total_observations",
    "data_available",
    "reason",
]
ANOMALY_VIEW = ["reason", "mo_key", "operator_name", "category", "product_name", "value", "threshold", "detail"]
OBSERVATION_VIEW = [
    "mo_key",
    "operator_name",
    "category",
    "product_name",
    "mo_created_at",
    "quantity",
    "duration_hours",
    "uph",
    "cycle_count",
]


def _find_extract(data_dir: Path, stem: str) -> Path:
    for suffix in EXTRACT_SUFFIXES:
        path = data_dir / f"{stem}{suffix}"
        if path.exists():
            return path
    console.print(f"[red]No {stem} extract ({'/'.join(EXTRACT_SUFFIXES)}) in {data_dir}[/red]")
    sys.exit(1)


def build_service(config: EngineConfig, data_dir: Path) -> RecomputeService:
    store = UphStore(config.store)
    if config.store.output_dir is not None:
        store.load()
    return RecomputeService(
        feed=FileCycleFeed(_find_extract(data_dir, "cycles")),
        mo_registry=FileMORegistry(_find_extract(data_dir, "production_orders")),
        operator_registry=FileOperatorRegistry(_find_extract(data_dir, "operators")),
        config=config,
        store=store,
    )


def _print_frame(df: pd.DataFrame, title: str, columns: list[str], fmt: str) -> None:
    match fmt:
        case "json":
            print(df.to_json(orient="records", date_format="iso", indent=2))
        case "csv":
            df.to_csv(sys.stdout, index=False)
        case "table" | "summary":
            console.print(frame_table(df, title, [c for c in columns if c in df.columns]))
        case other:
            console.print(f"[red]Unknown format '{other}'[/red]")
            sys.exit(1)


def cmd_recompute(service: RecomputeService, args: argparse.Namespace) -> int:
    handle = service.recompute(args.window, background=False)
    status = service.job_status(handle)

    if status.state != JobState.SUCCESS:
        label = "fatal" if status.fatal else "non-fatal"
        console.print(f"[red]Recompute {status.job_id} {status.state} ({label}): {status.error}[/red]")
        return 1

    snapshot = service.store.current
    report = build_run_report(snapshot, args.format)
    if args.format == "table":
        console.print(report)
    else:
        print(report)
    if args.report_dir:
        save_report(report, Path(args.report_dir), f"recompute_{snapshot.job_id}", args.format)
    return 0


def cmd_query(service: RecomputeService, args: argparse.Namespace) -> int:
    stats = service.query_uph(
        product_name=args.product,
        category=args.category,
        operator_id=args.operator_id,
        window_days=args.window,
    )
    _print_frame(stats, f"UPH ({stats['window_days'].iloc[0]}-day window)", STAT_COLUMNS, args.format)
    return 0


def cmd_anomalies(service: RecomputeService, args: argparse.Namespace) -> int:
    anomalies = service.list_anomalies(
        window_days=args.window,
        reasons=args.reason,
        include_cohort=not args.no_cohort,
    )
    _print_frame(anomalies, f"Anomalies ({len(anomalies)})", ANOMALY_VIEW, args.format)
    return 0


def cmd_observations(service: RecomputeService, args: argparse.Namespace) -> int:
    observations = service.list_observations(window_days=args.window)
    _print_frame(observations, f"Observations ({len(observations)})", OBSERVATION_VIEW, args.format)
    return 0


COMMANDS = {
    "recompute": cmd_recompute,
    "query": cmd_query,
    "anomalies": cmd_anomalies,
    "observations": cmd_observations,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="uph", description="Units-per-hour calculation engine")
    parser.add_argument("--env", default="development", help="production, staging, development or test")
    parser.add_argument("--config", type=Path, help="YAML or TOML file overriding thresholds")
    parser.add_argument("--data-dir", type=Path, default=Path("data"), help="Directory with cycle, MO and operator extracts")
    parser.add_argument("--output-dir", type=Path, help="Snapshot directory (overrides the environment default)")
    parser.add_argument("--format", default="table", choices=["table", "json", "summary", "csv"])
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    recompute = sub.add_parser("recompute", help="Rebuild all UPH results from the extracts")
    recompute.add_argument("--window", type=int, help="Only precompute statistics for this window")
    recompute.add_argument("--report-dir", type=Path, help="Also save the run report here")

    query = sub.add_parser("query", help="Show windowed UPH statistics")
    query.add_argument("--window", type=int, help="Window length in days")
    query.add_argument("--product", help="Product name")
    query.add_argument("--category", help="Cutting, Assembly or Packaging")
    query.add_argument("--operator-id", type=int, help="Operator id")

    anomalies = sub.add_parser("anomalies", help="List rejected and flagged aggregates")
    anomalies.add_argument("--window", type=int, help="Only MOs created within this many days")
    anomalies.add_argument("--reason", action="append", help="Filter by reason (repeatable)")
    anomalies.add_argument("--no-cohort", action="store_true", help="Skip advisory cohort outliers")

    observations = sub.add_parser("observations", help="List surviving per-MO observations")
    observations.add_argument("--window", type=int, help="Only MOs created within this many days")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )

    try:
        config = load_engine_config(args.env, args.config)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        return 2
    if args.output_dir is not None:
        config = replace(config, store=replace(config.store, output_dir=args.output_dir))

    with build_service(config, args.data_dir) as service:
        try:
            return COMMANDS[args.command](service, args)
        except ValueError as exc:
            console.print(f"[red]{exc}[/red]")
            return 2


if __name__ == "__main__":
    sys.exit(main())
