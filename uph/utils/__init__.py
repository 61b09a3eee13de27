"""Shared utilities for the UPH engine."""

from uph.utils.io import read_table, write_output, read_output
from uph.utils.transforms import normalize_columns, merge_datasets, join_ids
from uph.utils.validators import validate_dataframe, validate_unique
from uph.utils.types import RejectionReason, WorkCenterCategory, JobState
