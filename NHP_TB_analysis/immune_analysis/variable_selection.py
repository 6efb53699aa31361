'''
`variable_selection.py` extracts tidy subsets of the long table of immune variables with one row per animal and time point.

A variable is selected either
    - by exact full key, e.g. "BAL CD4 (IFNg+IL2+TNF+) % week8", or
    - by short key across all time points, e.g. "BAL CD4 (IFNg+IL2+TNF+) %".
Rows for a short key include the cumulative nAUC summary, whose key shares the short key.
Mixing per-time-point values with the nAUC summary corrupts any time series,
so selecting by short key requires a rule that excludes nAUC rows.
'''

from enum import Enum
import logging

import pandas as pd

from NHP_TB_analysis.config import NAUC_SENTINEL
from NHP_TB_analysis.exceptions import AmbiguousVariable


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


LIST_OF_COLUMNS_OF_SELECTIONS = ["animal_id", "time_point", "key", "short_key", "tissue", "antigen", "unit", "value"]


class MatchMode(str, Enum):
    EXACT_KEY = "exact_key"
    SHORT_KEY_ALL_TIMEPOINTS = "short_key_all_timepoints"


def exclude_nAUC(df: pd.DataFrame) -> pd.Series:
    '''
    Rule providing True for rows that are cumulative nAUC summaries.
    '''
    return df["key"].str.endswith(NAUC_SENTINEL) | (df["time_point"].astype(object) == NAUC_SENTINEL)


def select_variable(
    table: pd.DataFrame,
    identifier: str,
    match_mode = MatchMode.EXACT_KEY,
    exclude_rule = None
) -> pd.DataFrame:
    '''
    Provide rows of a table of immune variables for a variable, sorted by animal ID and time point.

    Parameters
    ----------
    table: pd.DataFrame -- normalized table of immune variables
    identifier: str -- full key or short key
    match_mode: MatchMode or str -- "exact_key" or "short_key_all_timepoints"
    exclude_rule: callable -- function of a data frame providing a boolean series of rows to exclude;
        required when matching by short key (e.g., `exclude_nAUC`)

    Raises
    ------
    ValueError -- if matching by short key without a rule that excludes rows
    AmbiguousVariable -- if a pair of animal ID and key occurs more than once after filtering
    '''
    match_mode = MatchMode(match_mode)
    if match_mode is MatchMode.EXACT_KEY:
        selection = table[table["key"] == identifier]
    else:
        if exclude_rule is None:
            raise ValueError(
                f"Selecting short key {identifier} across all time points without a rule excluding {NAUC_SENTINEL} rows is unsafe. "
                f"Provide a rule such as `exclude_nAUC`."
            )
        selection = table[table["short_key"] == identifier]
    if exclude_rule is not None and not selection.empty:
        indicator_of_exclusion = exclude_rule(selection).astype(bool)
        logger.debug(f"{int(indicator_of_exclusion.sum())} rows of variable {identifier} were excluded.")
        selection = selection[~indicator_of_exclusion]

    duplicated = selection[selection.duplicated(subset = ["animal_id", "key"], keep = False)]
    if not duplicated.empty:
        pairs = sorted(set(zip(duplicated["animal_id"], duplicated["key"])))
        raise AmbiguousVariable(f"Pairs of animal ID and key {pairs} occur more than once for variable {identifier}.")

    list_of_columns = [column for column in LIST_OF_COLUMNS_OF_SELECTIONS if column in selection.columns]
    return (
        selection[list_of_columns]
        .sort_values(["animal_id", "time_point", "key"])
        .reset_index(drop = True)
    )


def group_rows_by_variable(table: pd.DataFrame, column: str = "key") -> dict[str, pd.DataFrame]:
    '''
    Provide a dictionary of values of a column and the rows with each value, in order of first appearance.
    Groups are disjoint, so per-variable reducers may be mapped over them in parallel.
    '''
    return {
        variable: rows.reset_index(drop = True)
        for variable, rows in table.groupby(column, sort = False, observed = True)
    }
