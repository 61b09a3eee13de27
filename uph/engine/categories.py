"""Map free-text work-center names onto the three canonical categories."""

import logging

import pandas as pd

from uph.config import DEFAULT_CATEGORY_KEYWORDS, KeywordTable
from uph.engine.models import REJECTION_COLUMNS
from uph.utils.types import RejectionReason, WorkCenterCategory

logger = logging.getLogger(__name__)


def categorize_work_center(
    name: str | None,
    rules: KeywordTable = DEFAULT_CATEGORY_KEYWORDS,
) -> WorkCenterCategory | None:
    """Case-insensitive substring match; the first matching category wins.

    Unmatched names return None. They are never defaulted to Assembly.
    """
    if not name:
        return None
    normalized = name.lower().strip()
    for category, keywords in rules:
        if any(kw in normalized for kw in keywords):
            return category
    return None


def categorize_cycles(
    cycles: pd.DataFrame,
    rules: KeywordTable = DEFAULT_CATEGORY_KEYWORDS,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Attach ``category`` to each cycle; drop and report unmapped ones."""
    df = cycles.copy()
    mapping = {wc: categorize_work_center(wc, rules) for wc in df["work_center"].unique()}
    df["category"] = df["work_center"].map(lambda wc: v.value if (v := mapping[wc]) else None)

    unmapped = df["category"].isna()
    rejected = pd.DataFrame({
        "stage": "categorize",
        "cycle_id": df.loc[unmapped, "cycle_id"],
        "reason": RejectionReason.UNMAPPED_WORK_CENTER.value,
        "detail": "work center " + df.loc[unmapped, "work_center"].astype(str),
    }, columns=REJECTION_COLUMNS).reset_index(drop=True)

    unknown = sorted(wc for wc, v in mapping.items() if v is None)
    if unknown:
        logger.warning(f"Unmapped work centers ({len(rejected)} cycles): {unknown}")

    categorized = df[~unmapped].reset_index(drop=True)
    logger.info(
        f"Categorized {len(categorized)} cycles: "
        f"{categorized['category'].value_counts().to_dict()}"
    )
    return categorized, rejected
