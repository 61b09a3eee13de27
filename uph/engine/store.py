"""Published UPH result sets.

Readers always see one complete snapshot. A new snapshot becomes visible
only through :meth:`UphStore.publish`, which swaps a single reference under
a lock. When an output directory is configured the snapshot is first
written to a staging directory, renamed into place, and only then pointed
to by the ``CURRENT`` marker, so a failed write leaves the previous
snapshot in force both on disk and in memory.
"""

import json
import logging
import os
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd

from uph.config import StoreConfig
from uph.engine.models import ANOMALY_COLUMNS, AGGREGATE_COLUMNS, REJECTION_COLUMNS, STATISTIC_COLUMNS
from uph.engine.pipeline import PipelineResult
from uph.errors import StorageWriteError
from uph.utils.io import read_output, write_output

logger = logging.getLogger(__name__)

CURRENT_MARKER = "CURRENT"
KEEP_SNAPSHOTS = 3

_FRAMES = {
    "observations": AGGREGATE_COLUMNS,
    "anomalies": ANOMALY_COLUMNS,
    "rejections": REJECTION_COLUMNS,
    "statistics": STATISTIC_COLUMNS,
}
_DATE_COLUMNS = ("mo_created_at",)


@dataclass(frozen=True, eq=False)
class Snapshot:
    job_id: str
    as_of: pd.Timestamp
    methodology_version: str
    windows: tuple[int, ...]
    observations: pd.DataFrame
    anomalies: pd.DataFrame
    rejections: pd.DataFrame
    statistics: pd.DataFrame
    counters: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_result(cls, job_id: str, result: PipelineResult) -> "Snapshot":
        return cls(
            job_id=job_id,
            as_of=result.as_of,
            methodology_version=result.methodology_version,
            windows=tuple(result.windows),
            observations=result.observations,
            anomalies=result.anomalies,
            rejections=result.rejections,
            statistics=result.statistics,
            counters=dict(result.counters),
        )


class UphStore:
    def __init__(self, config: StoreConfig | None = None):
        self._config = config or StoreConfig()
        self._lock = threading.Lock()
        self._current: Snapshot | None = None

    @property
    def current(self) -> Snapshot | None:
        return self._current

    def publish(self, snapshot: Snapshot) -> None:
        root = Path(self._config.output_dir) if self._config.output_dir is not None else None
        if root is not None:
            self._write(snapshot, root)
        with self._lock:
            previous = self._current
            self._current = snapshot
        if root is not None:
            self._prune(root, keep=snapshot.job_id)
        logger.info(
            f"Published snapshot {snapshot.job_id} as of {snapshot.as_of:%Y-%m-%d %H:%M} "
            f"(replaced {previous.job_id if previous else 'nothing'})"
        )

    def _write(self, snapshot: Snapshot, root: Path) -> None:
        fmt = self._config.fmt
        staging = root / f".staging-{snapshot.job_id}"
        target = root / snapshot.job_id
        try:
            if staging.exists():
                shutil.rmtree(staging)
            staging.mkdir(parents=True)
            for name in _FRAMES:
                write_output(getattr(snapshot, name), staging / f"{name}.{fmt}", fmt)
            meta = {
                "job_id": snapshot.job_id,
                "as_of": snapshot.as_of.isoformat(),
                "methodology_version": snapshot.methodology_version,
                "windows": list(snapshot.windows),
                "counters": snapshot.counters,
                "format": fmt,
            }
            (staging / "meta.json").write_text(json.dumps(meta, indent=2))
            os.replace(staging, target)

            marker_tmp = root / f".{CURRENT_MARKER}.tmp"
            marker_tmp.write_text(snapshot.job_id)
            os.replace(marker_tmp, root / CURRENT_MARKER)
        except OSError as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise StorageWriteError(f"Could not write snapshot {snapshot.job_id} to {root}: {exc}") from exc

        logger.info(f"Snapshot {snapshot.job_id} written to {target}")

    def _prune(self, root: Path, keep: str) -> None:
        """Remove old snapshot directories; failures are logged, never raised."""
        try:
            snapshots = sorted(
                (p for p in root.iterdir() if p.is_dir() and not p.name.startswith(".")),
                key=lambda p: p.stat().st_mtime,
            )
        except OSError as exc:
            logger.warning(f"Could not list old snapshots under {root}: {exc}")
            return
        for old in snapshots[:-KEEP_SNAPSHOTS]:
            if old.name != keep:
                shutil.rmtree(old, ignore_errors=True)

    def load(self) -> Snapshot | None:
        """Restore the last published snapshot from disk, if there is one."""
        if self._config.output_dir is None:
            return self._current
        root = Path(self._config.output_dir)
        marker = root / CURRENT_MARKER
        if not marker.exists():
            logger.info(f"No published snapshot under {root}")
            return None

        directory = root / marker.read_text().strip()
        meta = json.loads((directory / "meta.json").read_text())
        frames = {}
        for name, columns in _FRAMES.items():
            df = read_output(directory / f"{name}.{meta['format']}", meta["format"]).reindex(columns=columns)
            for col in _DATE_COLUMNS:
                if col in df.columns:
                    df[col] = pd.to_datetime(df[col], utc=True, errors="coerce", format="mixed")
            frames[name] = df

        snapshot = Snapshot(
            job_id=meta["job_id"],
            as_of=pd.Timestamp(meta["as_of"]),
            methodology_version=meta["methodology_version"],
            windows=tuple(meta["windows"]),
            counters=meta["counters"],
            **frames,
        )
        with self._lock:
            self._current = snapshot
        logger.info(f"Loaded snapshot {snapshot.job_id} from {directory}")
        return snapshot
