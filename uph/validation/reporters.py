"""Run report formatting.

Turns a snapshot's counters and rejection logs into a table, JSON or a
short text summary for the CLI, the job log, and anomaly review.
"""

import json
from pathlib import Path

import pandas as pd
from rich.console import Console
from rich.table import Table

from uph.engine.store import Snapshot

type ReportFormat = str  # "table" | "json" | "summary"

console = Console(stderr=True)


def rejection_counts(snapshot: Snapshot) -> list[dict[str, str | int | bool]]:
    """Count record rejections and aggregate anomalies by stage and reason."""
    rows = []
    if not snapshot.rejections.empty:
        counts = snapshot.rejections.groupby(["stage", "reason"]).size()
        for (stage, reason), n in counts.items():
            rows.append({"stage": stage, "reason": reason, "count": int(n), "excluded": True})
    if not snapshot.anomalies.empty:
        counts = snapshot.anomalies.groupby(["stage", "reason", "excluded"]).size()
        for (stage, reason, excluded), n in counts.items():
            rows.append({"stage": stage, "reason": reason, "count": int(n), "excluded": bool(excluded)})
    return rows


def build_run_report(snapshot: Snapshot, output_format: ReportFormat = "table") -> str:
    rejections = rejection_counts(snapshot)

    match output_format:
        case "json":
            return _to_json(snapshot, rejections)
        case "summary":
            return _to_summary(snapshot, rejections)
        case "table" | _:
            return _to_table(snapshot, rejections)


def _to_json(snapshot: Snapshot, rejections: list[dict]) -> str:
    report = {
        "job_id": snapshot.job_id,
        "as_of": snapshot.as_of.isoformat(),
        "methodology_version": snapshot.methodology_version,
        "windows": list(snapshot.windows),
        "counters": snapshot.counters,
        "rejections": rejections,
    }
    return json.dumps(report, indent=2)


def _to_summary(snapshot: Snapshot, rejections: list[dict]) -> str:
    counters = snapshot.counters
    lines = [
        f"[{snapshot.job_id}] {snapshot.methodology_version} as of {snapshot.as_of:%Y-%m-%d %H:%M}: "
        f"{counters.get('observations', 0)} observations from {counters.get('cycles_fetched', 0)} cycles"
    ]
    for r in rejections:
        marker = "DROP" if r["excluded"] else "FLAG"
        lines.append(f"  {marker}: {r['stage']}/{r['reason']} x{r['count']}")
    return "\n".join(lines)


def _to_table(snapshot: Snapshot, rejections: list[dict]) -> str:
    table = Table(title=f"Recompute {snapshot.job_id} ({snapshot.methodology_version})")
    table.add_column("Stage", style="cyan")
    table.add_column("Reason", style="bold")
    table.add_column("Count", justify="right")
    table.add_column("Excluded")

    for name, value in snapshot.counters.items():
        table.add_row("counter", name, str(value), "")
    for r in rejections:
        excluded = "[red]yes[/red]" if r["excluded"] else "[yellow]advisory[/yellow]"
        table.add_row(r["stage"], r["reason"], str(r["count"]), excluded)

    buf = Console(file=None, force_terminal=False, width=120)
    with buf.capture() as capture:
        buf.print(table)
    return capture.get()


def frame_table(df: pd.DataFrame, title: str, columns: list[str] | None = None) -> Table:
    """Render a result frame as a rich table, floats to two decimals."""
    columns = columns or list(df.columns)
    table = Table(title=title)
    for col in columns:
        justify = "right" if pd.api.types.is_numeric_dtype(df[col]) else "left"
        table.add_column(col, justify=justify)
    for row in df[columns].itertuples(index=False):
        table.add_row(*(_cell(v) for v in row))
    return table


def _cell(value: object) -> str:
    match value:
        case None:
            return ""
        case float() if pd.isna(value):
            return ""
        case float():
            return f"{value:.2f}"
        case pd.Timestamp():
            return "" if pd.isna(value) else f"{value:%Y-%m-%d}"
        case _:
            return "" if value is pd.NaT else str(value)


def save_report(
    report: str,
    output_dir: Path,
    name: str,
    fmt: ReportFormat = "json",
) -> Path:
    """Persist a run report to disk."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    match fmt:
        case "json":
            path = output_dir / f"{name}.json"
        case _:
            path = output_dir / f"{name}.txt"

    path.write_text(report)
    console.print(f"  Report saved: {path}")
    return path
