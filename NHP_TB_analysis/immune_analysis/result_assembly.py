'''
`result_assembly.py` attaches descriptors of immune variables (short key, tissue, antigen, and unit)
to tables of results so that results may be filtered and faceted by tissue and unit.

Descriptors are constant across the time points of a short key (see `validate_descriptors`),
so 1 representative row per variable is enough. The first occurrence of each variable wins.
A result row without descriptors keeps missing descriptors; no result row is ever dropped or duplicated.
'''

import logging

import pandas as pd


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


LIST_OF_DESCRIPTOR_COLUMNS = ["short_key", "tissue", "antigen", "unit"]

LIST_OF_TAXONOMY_COLUMNS = ["cell_subset", "boolean_combination", "cytokine_set", "parsed"]


def enrich(
    result_rows: pd.DataFrame,
    descriptor_table: pd.DataFrame,
    join_key: str = "key",
    result_column: str | None = None
) -> pd.DataFrame:
    '''
    Left join a table of results to 1 representative row of descriptors per variable.

    Parameters
    ----------
    result_rows: pd.DataFrame -- table of results with 1 row per variable
    descriptor_table: pd.DataFrame -- table with column `join_key` and descriptor columns, e.g. the table of immune variables
    join_key: str -- column of `descriptor_table` identifying variables
    result_column: str -- column of `result_rows` identifying variables; `join_key` by default

    Returns
    -------
    a copy of `result_rows` in the same order with descriptor columns appended
    '''
    if result_column is None:
        result_column = join_key
    list_of_descriptor_columns = [
        column for column in LIST_OF_DESCRIPTOR_COLUMNS
        if column in descriptor_table.columns and column != join_key and column not in result_rows.columns
    ]
    descriptors = (
        descriptor_table[[join_key] + list_of_descriptor_columns]
        .drop_duplicates(subset = [join_key], keep = "first")
        .rename(columns = {join_key: result_column})
    )
    for column in ["tissue", "unit"]:
        if column in descriptors.columns:
            descriptors[column] = descriptors[column].astype(object)
    enriched = result_rows.merge(descriptors, how = "left", on = result_column, validate = "many_to_one")
    number_of_rows_without_descriptors = int(enriched[list_of_descriptor_columns].isna().all(axis = 1).sum()) if list_of_descriptor_columns else 0
    if number_of_rows_without_descriptors:
        logger.warning(f"{number_of_rows_without_descriptors} result rows have no descriptors.")
    return enriched


def add_taxonomy(enriched_rows: pd.DataFrame, catalog: pd.DataFrame) -> pd.DataFrame:
    '''
    Left join enriched results to parsed fields of short keys (see `parse_variable_catalog`).
    '''
    fields = catalog[["short_key"] + LIST_OF_TAXONOMY_COLUMNS].drop_duplicates(subset = ["short_key"], keep = "first")
    return enriched_rows.merge(fields, how = "left", on = "short_key", validate = "many_to_one")


def filter_results(enriched_rows: pd.DataFrame, tissue: str | None = None, unit: str | None = None) -> pd.DataFrame:
    mask = pd.Series(True, index = enriched_rows.index)
    if tissue is not None:
        mask &= enriched_rows["tissue"] == tissue
    if unit is not None:
        mask &= enriched_rows["unit"] == unit
    return enriched_rows[mask].reset_index(drop = True)
