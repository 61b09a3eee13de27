"""Engine configuration and environment setup.

The corruption signature and the per-category UPH ceilings are heuristics
calibrated against observed bad data. They live here as named defaults and
can be replaced from ``[tool.uph]`` in pyproject.toml or from a YAML/TOML
override file without touching the stage code.
"""

import logging
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

from uph.utils.types import WorkCenterCategory, parse_category

type ConfigDict = dict[str, object]
type KeywordTable = tuple[tuple[WorkCenterCategory, tuple[str, ...]], ...]

logger = logging.getLogger(__name__)

# Bump on any change to grouping, filtering, or averaging rules.
METHODOLOGY_VERSION = "mo-average-v2"

DEFAULT_CATEGORY_KEYWORDS: KeywordTable = (
    (WorkCenterCategory.CUTTING, ("cutting", "laser", "webbing")),
    (
        WorkCenterCategory.ASSEMBLY,
        ("sewing", "assembly", "rope", "embroidery", "grommet", "zipper"),
    ),
    (WorkCenterCategory.PACKAGING, ("packaging", "pack")),
)

DEFAULT_MAX_UPH = {
    WorkCenterCategory.ASSEMBLY: 100.0,
    WorkCenterCategory.CUTTING: 500.0,
    WorkCenterCategory.PACKAGING: 300.0,
}


@dataclass(frozen=True)
class CorruptionConfig:
    max_duration_seconds: int = 60
    min_repeats: int = 3


@dataclass(frozen=True)
class OutlierConfig:
    min_duration_minutes: float = 5.0
    max_uph: dict[WorkCenterCategory, float] = field(
        default_factory=lambda: dict(DEFAULT_MAX_UPH)
    )
    # advisory cohort review
    iqr_min_samples: int = 5
    iqr_multiplier: float = 1.5

    @property
    def min_duration_seconds(self) -> float:
        return self.min_duration_minutes * 60


@dataclass(frozen=True)
class FeedConfig:
    state: str = "done"
    page_size: int = 500


@dataclass(frozen=True)
class StoreConfig:
    output_dir: Path | None = None
    fmt: str = "json"
    expectations_gate: bool = False


@dataclass(frozen=True)
class EngineConfig:
    corruption: CorruptionConfig = field(default_factory=CorruptionConfig)
    outliers: OutlierConfig = field(default_factory=OutlierConfig)
    categories: KeywordTable = DEFAULT_CATEGORY_KEYWORDS
    feed: FeedConfig = field(default_factory=FeedConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    windows: tuple[int, ...] = (7, 30, 180)
    default_window: int = 30
    methodology_version: str = METHODOLOGY_VERSION

    def check_window(self, window_days: int) -> int:
        if window_days not in self.windows:
            raise ValueError(
                f"Unsupported window: {window_days} days (allowed: {list(self.windows)})"
            )
        return window_days


def load_engine_config(
    env: str = "production",
    config_path: str | Path | None = None,
) -> EngineConfig:
    match env:
        case "production":
            feed = FeedConfig(page_size=1000)
            store = StoreConfig(output_dir=Path("/var/lib/uph/snapshots"))
        case "staging":
            feed = FeedConfig(page_size=1000)
            store = StoreConfig(output_dir=Path("/var/lib/uph-staging/snapshots"))
        case "development":
            feed = FeedConfig(page_size=500)
            store = StoreConfig(output_dir=Path("output/uph"))
        case "test":
            feed = FeedConfig(page_size=100)
            store = StoreConfig()
        case other:
            raise ValueError(f"Unknown environment: {other}")

    config = EngineConfig(feed=feed, store=store)
    config = apply_overrides(config, get_env_config())
    if config_path is not None:
        config = apply_overrides(config, _load_override_file(Path(config_path)))
    return config


def get_env_config() -> ConfigDict:
    """Read engine defaults from pyproject.toml, if the source tree is present."""
    pyproject = Path(__file__).parent.parent / "pyproject.toml"
    if not pyproject.exists():
        return {}
    with open(pyproject, "rb") as f:
        data = tomllib.load(f)
    return data.get("tool", {}).get("uph", {})


def _load_override_file(path: Path) -> ConfigDict:
    match path.suffix:
        case ".yaml" | ".yml":
            import yaml

            with open(path) as f:
                return yaml.safe_load(f) or {}
        case ".toml":
            with open(path, "rb") as f:
                return tomllib.load(f)
        case ext:
            raise ValueError(f"Unsupported config format: {ext}")


def apply_overrides(config: EngineConfig, overrides: Mapping[str, object]) -> EngineConfig:
    """Return a copy of ``config`` with the given sections replaced."""
    if not overrides:
        return config

    changes: ConfigDict = {}
    for section, values in overrides.items():
        match section, values:
            case "corruption", dict():
                changes["corruption"] = replace(config.corruption, **values)
            case "outliers", dict():
                values = dict(values)
                max_uph = dict(config.outliers.max_uph)
                for name, ceiling in (values.pop("max_uph", None) or {}).items():
                    max_uph[parse_category(name)] = float(ceiling)
                changes["outliers"] = replace(config.outliers, max_uph=max_uph, **values)
            case "feed", dict():
                changes["feed"] = replace(config.feed, **values)
            case "store", dict():
                values = dict(values)
                if values.get("output_dir") is not None:
                    values["output_dir"] = Path(values["output_dir"])
                changes["store"] = replace(config.store, **values)
            case "categories", dict():
                changes["categories"] = _keyword_table(values)
            case "windows", list() | tuple():
                changes["windows"] = tuple(int(w) for w in values)
            case "default_window", int():
                changes["default_window"] = values
            case "methodology_version", str():
                changes["methodology_version"] = values
            case unknown, _:
                logger.warning(f"Ignoring unknown config section: {unknown}")

    config = replace(config, **changes)
    config.check_window(config.default_window)
    return config


def _keyword_table(values: Mapping[str, list[str]]) -> KeywordTable:
    """Build an ordered keyword table; category order stays Cutting, Assembly, Packaging."""
    by_category = {parse_category(name): tuple(k.lower() for k in kws) for name, kws in values.items()}
    table = []
    for category, defaults in DEFAULT_CATEGORY_KEYWORDS:
        table.append((category, by_category.get(category, defaults)))
    return tuple(table)
