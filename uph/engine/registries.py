"""Interfaces to the external collaborators the engine reads from.

The engine never talks to the MES or ERP directly: a recompute receives a
cycle feed, an MO registry, and an operator registry. Frame-backed
implementations cover tests and file extracts; a live connector only has to
satisfy the same protocols and raise :class:`RegistryUnavailable` when its
backend cannot be reached.
"""

import logging
import math
import numbers
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

import pandas as pd

from uph.engine.models import MO_COLUMNS
from uph.errors import RegistryUnavailable
from uph.utils.io import read_table
from uph.utils.transforms import normalize_columns
from uph.utils.types import MOKey, OperatorId, RawRecord
from uph.utils.validators import validate_unique

logger = logging.getLogger(__name__)

_MO_PATTERN = re.compile(r"^mo[\s\-#]*(\d+)$", re.IGNORECASE)


class CycleFeed(Protocol):
    def fetch_page(self, state: str | None, offset: int, limit: int) -> list[RawRecord]:
        """Return up to ``limit`` raw cycle records in a stable order."""


class MORegistry(Protocol):
    def lookup(self, mo_keys: Sequence[MOKey]) -> pd.DataFrame:
        """Return one row per resolvable key with the MO_COLUMNS layout."""


class OperatorRegistry(Protocol):
    def resolve(self, names: Sequence[str]) -> dict[str, OperatorId]:
        """Map display names to stable ids; unknown names are omitted."""

    def display_names(self, ids: Sequence[OperatorId]) -> dict[OperatorId, str]:
        """Map ids back to the registry's current display name."""


def normalize_mo_key(value: object) -> MOKey | None:
    """Normalize an MO reference to its registry key.

    ``123``, ``"123"``, ``"MO123"`` and ``"mo 123"`` all become ``"MO123"``.
    Anything else is kept as stripped upper-case text; no fuzzy matching.
    """
    match value:
        case None:
            return None
        case bool():
            return None
        case numbers.Integral():
            return f"MO{int(value)}"
        case float() if math.isnan(value):
            return None
        case float() if value.is_integer():
            return f"MO{int(value)}"
        case str():
            text = value.strip()
            if not text:
                return None
            if text.isdigit():
                return f"MO{text}"
            if m := _MO_PATTERN.match(text):
                return f"MO{m.group(1)}"
            return text.upper()
        case _:
            return None


def _name_key(name: str) -> str:
    return " ".join(str(name).split()).casefold()


class FrameCycleFeed:
    """Cycle feed over an in-memory frame of raw records."""

    def __init__(self, records: pd.DataFrame):
        self._records = normalize_columns(records).reset_index(drop=True)

    def fetch_page(self, state: str | None, offset: int, limit: int) -> list[RawRecord]:
        df = self._records
        if state is not None and "state" in df.columns:
            df = df[df["state"].astype(str).str.lower() == state.lower()]
        page = df.iloc[offset:offset + limit]
        return page.astype(object).where(page.notna(), None).to_dict("records")


class FrameMORegistry:
    """MO registry over a frame of production orders."""

    def __init__(self, orders: pd.DataFrame):
        self._orders = self._prepare(orders)

    @staticmethod
    def _prepare(orders: pd.DataFrame) -> pd.DataFrame:
        df = normalize_columns(orders, {"created_at": "mo_created_at", "create_date": "mo_created_at"})
        source = "mo_number" if "mo_number" in df.columns else "mo_id"
        df["mo_key"] = df[source].apply(normalize_mo_key)
        df = df.dropna(subset=["mo_key"]).copy()

        for col in ("product_name", "routing_name", "quantity", "mo_created_at"):
            if col not in df.columns:
                df[col] = None
        df["product_name"] = df["product_name"].where(
            df["product_name"].notna() & (df["product_name"].astype(str).str.strip() != ""),
            df["routing_name"],
        )
        df["quantity"] = pd.to_numeric(df["quantity"], errors="coerce")
        df["mo_created_at"] = pd.to_datetime(df["mo_created_at"], utc=True, errors="coerce", format="mixed")

        check = validate_unique(df, ["mo_key"])
        if not check["valid"]:
            logger.warning(f"MO registry has duplicate keys, keeping first: {check['errors']}")
            df = df.drop_duplicates(subset=["mo_key"], keep="first")

        return df[MO_COLUMNS].set_index("mo_key", drop=False)

    def lookup(self, mo_keys: Sequence[MOKey]) -> pd.DataFrame:
        found = self._orders.index.intersection(pd.Index(list(mo_keys)))
        return self._orders.loc[found].reset_index(drop=True)


class FrameOperatorRegistry:
    """Operator registry over a frame of ``operator_id``/``name`` rows."""

    def __init__(self, operators: pd.DataFrame):
        df = normalize_columns(operators, {"id": "operator_id", "operator_name": "name"})
        df = df.dropna(subset=["operator_id", "name"]).copy()
        df["operator_id"] = df["operator_id"].astype(int)
        self._by_name = {_name_key(n): int(i) for i, n in zip(df["operator_id"], df["name"])}
        self._by_id = {int(i): str(n).strip() for i, n in zip(df["operator_id"], df["name"])}

    def resolve(self, names: Sequence[str]) -> dict[str, OperatorId]:
        resolved = {}
        for name in names:
            operator_id = self._by_name.get(_name_key(name))
            if operator_id is not None:
                resolved[name] = operator_id
        return resolved

    def display_names(self, ids: Sequence[OperatorId]) -> dict[OperatorId, str]:
        return {i: self._by_id[i] for i in ids if i in self._by_id}


def _load_extract(registry: str, path: Path) -> pd.DataFrame:
    try:
        return read_table(path)
    except (FileNotFoundError, PermissionError, OSError) as exc:
        raise RegistryUnavailable(registry, exc) from exc


class FileCycleFeed(FrameCycleFeed):
    """Cycle feed read lazily from an extract file on first page request."""

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._records = None

    def fetch_page(self, state: str | None, offset: int, limit: int) -> list[RawRecord]:
        if self._records is None:
            self._records = normalize_columns(_load_extract("cycle feed", self._path))
        return super().fetch_page(state, offset, limit)


class FileMORegistry(FrameMORegistry):
    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._orders = None

    def lookup(self, mo_keys: Sequence[MOKey]) -> pd.DataFrame:
        if self._orders is None:
            self._orders = self._prepare(_load_extract("MO", self._path))
        return super().lookup(mo_keys)


class FileOperatorRegistry:
    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._frame: FrameOperatorRegistry | None = None

    def _registry(self) -> FrameOperatorRegistry:
        if self._frame is None:
            self._frame = FrameOperatorRegistry(_load_extract("operator", self._path))
        return self._frame

    def resolve(self, names: Sequence[str]) -> dict[str, OperatorId]:
        return self._registry().resolve(names)

    def display_names(self, ids: Sequence[OperatorId]) -> dict[OperatorId, str]:
        return self._registry().display_names(ids)
