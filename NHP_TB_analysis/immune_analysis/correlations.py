#!/usr/bin/env python3
'''
This module correlates 1 reference series, such as scores of a module of genes at 1 time point,
with every variable in a catalog of immune variables.

For each variable, the reference series and the values of that variable are joined on animal ID.
Rows missing either value are dropped. If at least 2 rows remain, this module computes
Spearman's rank correlation coefficient rho and a 2 sided p value for a null hypothesis of no rank association.
Rank correlation is used because scores of modules and units of immune assays are on scales that are not comparable,
and because rank correlation detects monotonic relationships that are not linear.
If fewer than 2 rows remain, rho and p value are missing and the number of rows used is 0.
If rho is undefined, e.g. because the values of either series are constant, the variable is not computed and
the number of rows used is also 0.

After all correlations of a batch are computed, p values are adjusted across the whole batch into
False Discovery Rates with the Benjamini-Hochberg procedure.
Results are sorted by raw p value.

Usage
-----
python -m NHP_TB_analysis.immune_analysis.correlations --root . --module M1 --time-point day2
'''

from concurrent.futures import ThreadPoolExecutor
import argparse
import logging
import warnings

import numpy as np
import pandas as pd
import scipy.stats as ss

from NHP_TB_analysis.config import Paths
from NHP_TB_analysis.data_processing.data_loading import load_study_tables
from NHP_TB_analysis.data_processing.utils import normalize_time_point
from NHP_TB_analysis.exceptions import AnalysisError, MissingJoinTarget
from NHP_TB_analysis.immune_analysis.module_scores import score_modules, select_module_score
from NHP_TB_analysis.immune_analysis.multiple_testing import add_fdr_columns
from NHP_TB_analysis.immune_analysis.results import Computed, Correlation, NotComputed, correlation_to_row
from NHP_TB_analysis.immune_analysis.variable_selection import MatchMode, group_rows_by_variable, select_variable


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


MINIMUM_NUMBER_OF_JOINED_ROWS = 2


def correlate(reference_values: pd.Series, candidate_values: pd.Series):
    '''
    Provide `Computed` wrapping a `Correlation` of 2 series indexed by animal ID,
    or `NotComputed` if rho or its p value is undefined, e.g. because a series is constant.

    Raises
    ------
    MissingJoinTarget -- if fewer than 2 animals have values in both series
    '''
    joined = pd.concat(
        [reference_values.rename("reference"), candidate_values.rename("candidate")],
        axis = 1,
        join = "inner"
    ).dropna()
    if len(joined) < MINIMUM_NUMBER_OF_JOINED_ROWS:
        raise MissingJoinTarget(f"{len(joined)} animals have values in both series; at least {MINIMUM_NUMBER_OF_JOINED_ROWS} are required.")
    with warnings.catch_warnings():
        # Constant series yield NaN with a warning.
        warnings.simplefilter("ignore", category = RuntimeWarning)
        warnings.simplefilter("ignore", category = ss.ConstantInputWarning)
        rho, p = ss.spearmanr(joined["reference"], joined["candidate"])
    if not (np.isfinite(rho) and np.isfinite(p)):
        return NotComputed(f"Spearman correlation is undefined for {len(joined)} animals; a series may be constant")
    return Computed(Correlation(n = len(joined), rho = float(rho), pvalue = float(p)))


def _series_by_animal(rows: pd.DataFrame) -> pd.Series:
    return rows.set_index("animal_id")["value"]


def correlate_against_catalog(
    reference_values: pd.Series,
    candidate_catalog: pd.DataFrame,
    join_key: str = "animal_id",
    list_of_keys: list[str] | None = None,
    max_workers: int = 1
) -> pd.DataFrame:
    '''
    Correlate a reference series with every variable (full key) of a long table of immune variables.

    Parameters
    ----------
    reference_values: pd.Series -- values indexed by `join_key`, or a data frame with columns `join_key` and "value"
    candidate_catalog: pd.DataFrame -- long table with columns "key", `join_key`, and "value"
    join_key: str -- column identifying animals
    list_of_keys: list[str] -- keys to correlate; all keys of the catalog by default
    max_workers: int -- number of threads correlating variables

    Returns
    -------
    a data frame with exactly 1 row per key with columns key, status, reason, n, rho, pvalue, FDR, significant, and suggestive,
    sorted by raw p value. Keys whose rows are ambiguous or that join fewer than 2 animals have status "not computed".
    '''
    if isinstance(reference_values, pd.DataFrame):
        reference_values = reference_values.set_index(join_key)["value"]
    if reference_values.index.duplicated().any():
        raise ValueError("Reference series has more than 1 value for some animals.")
    candidate_catalog = candidate_catalog.rename(columns = {join_key: "animal_id"})
    if list_of_keys is None:
        list_of_keys = list(pd.unique(candidate_catalog["key"]))
    dictionary_of_keys_and_rows = group_rows_by_variable(candidate_catalog[candidate_catalog["key"].isin(list_of_keys)])

    def analyze(key):
        rows = dictionary_of_keys_and_rows.get(key)
        if rows is None:
            return NotComputed("MissingJoinTarget: key is absent from catalog")
        try:
            selection = select_variable(rows, key, MatchMode.EXACT_KEY)
            return correlate(reference_values, _series_by_animal(selection))
        except AnalysisError as exception:
            return NotComputed(f"{type(exception).__name__}: {exception}")

    if max_workers > 1:
        with ThreadPoolExecutor(max_workers = max_workers) as executor:
            list_of_results = list(executor.map(analyze, list_of_keys))
    else:
        list_of_results = [analyze(key) for key in list_of_keys]

    # All p values of the batch are collected before FDRs are computed.
    stat_df = pd.DataFrame(
        [correlation_to_row(key, result) for key, result in zip(list_of_keys, list_of_results)],
        columns = ["key", "status", "reason", "n", "rho", "pvalue"]
    )
    name = reference_values.name if reference_values.name is not None else "reference"
    return add_fdr_columns(stat_df, f"Spearman correlations with {name}")


def correlate_module_against_catalog(
    module_scores: pd.DataFrame,
    module_id: str,
    time_point: str,
    immune_variables: pd.DataFrame,
    max_workers: int = 1
) -> pd.DataFrame:
    '''
    Provide correlations of scores of a module at a time point with every immune variable,
    with columns module and module_time_point identifying the reference.
    '''
    reference_values = select_module_score(module_scores, module_id, time_point)
    time_point = normalize_time_point(time_point)
    correlations = correlate_against_catalog(reference_values, immune_variables, max_workers = max_workers)
    correlations.insert(0, "module_time_point", time_point)
    correlations.insert(0, "module", module_id)
    return correlations


def main():
    parser = argparse.ArgumentParser(description = "Correlate scores of a module at a time point with immune variables.")
    parser.add_argument("--root", default = None, help = "Directory containing directory `data`.")
    parser.add_argument("--module", required = True, help = "ID of module")
    parser.add_argument("--time-point", required = True, help = "Time point of module scores, e.g. day2")
    parser.add_argument("--max-workers", type = int, default = 1, help = "Number of threads correlating variables.")
    parser.add_argument("--strict", action = "store_true", help = "Abort if time points or descriptors are inconsistent.")
    args = parser.parse_args()

    paths = Paths(args.root)
    paths.ensure_dependencies_for_pipeline_exist()
    tables = load_study_tables(
        paths.animal_metadata,
        paths.immune_variables,
        paths.gene_expression,
        paths.gene_module_map,
        strict = args.strict
    )
    module_scores = score_modules(tables.gene_expression, tables.gene_module_map)
    correlations = correlate_module_against_catalog(
        module_scores,
        args.module,
        args.time_point,
        tables.immune_variables,
        max_workers = args.max_workers
    )
    path = paths.correlations_of_module_and_immune_variables(args.module, args.time_point)
    correlations.to_csv(path, index = False)
    logger.info(f"Correlations were saved to {path}.")
    top = correlations[correlations["status"] == "computed"].head(5)
    for _, row in top.iterrows():
        logger.info(f"{row['key']}: rho = {row['rho']:.3f}, p = {row['pvalue']:.2e}, FDR = {row['FDR']:.2e}, n = {row['n']}")


if __name__ == "__main__":
    main()
