"""Pull raw work-cycle records from the external cycle feed."""

import logging

import pandas as pd

from uph.engine.models import RAW_CYCLE_FIELDS, REJECTION_COLUMNS
from uph.engine.registries import CycleFeed
from uph.errors import RegistryUnavailable, UphEngineError
from uph.utils.types import CancelCheck, RejectionReason

logger = logging.getLogger(__name__)


def _no_cancel() -> None:
    return None


def _read_page(feed: CycleFeed, state: str | None, offset: int, limit: int) -> list[dict]:
    try:
        return feed.fetch_page(state, offset, limit)
    except UphEngineError:
        raise
    except (ConnectionError, TimeoutError, OSError) as exc:
        raise RegistryUnavailable("cycle feed", exc) from exc


def fetch_cycles(
    feed: CycleFeed,
    state: str | None = "done",
    page_size: int = 500,
    cancel_check: CancelCheck = _no_cancel,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Page through the feed and return (raw cycles, duplicate rejections).

    Paging stops at the first short page. Cancellation is checked between
    pages. A cycle id seen twice keeps its first record; later copies are
    rejected as ``DuplicateCycle``.
    """
    if page_size <= 0:
        raise ValueError(f"page_size must be positive, got {page_size}")

    records: list[dict] = []
    offset = 0
    pages = 0
    while True:
        cancel_check()
        page = _read_page(feed, state, offset, page_size)
        records.extend(page)
        pages += 1
        if len(page) < page_size:
            break
        offset += page_size

    raw = pd.DataFrame.from_records(records)
    raw = raw.reindex(columns=list(dict.fromkeys(RAW_CYCLE_FIELDS + list(raw.columns))))

    ids = raw["cycle_id"].astype(str)
    dupes = raw["cycle_id"].notna() & ids.duplicated(keep="first")
    rejected = pd.DataFrame({
        "stage": "ingest",
        "cycle_id": ids[dupes],
        "reason": RejectionReason.DUPLICATE_CYCLE.value,
        "detail": "cycle id already ingested",
    }, columns=REJECTION_COLUMNS)

    raw = raw[~dupes].reset_index(drop=True)
    logger.info(
        f"Fetched {len(raw)} cycles in {pages} pages (state={state}), "
        f"{len(rejected)} duplicate ids dropped"
    )
    return raw, rejected.reset_index(drop=True)
