#!/usr/bin/env python3
'''
This module compares values of immune variables of protected animals (group A) and
animals that were not protected (group B) for every variable in a catalog.
For each variable this module computes
    - mean difference = mean of A - mean of B,
    - median difference = median of A - median of B,
    - mean ratio = mean of A / mean of B,
    - median ratio = median of A / median of B, and
    - a p value of a 2 sided Mann-Whitney U Test / Wilcoxon Rank Sum Test.
A ratio whose denominator is 0 is an undefined ratio rather than infinity or 0.

Values from group A and group B may be combined in a list.
The list may be sorted from smallest to largest.
A rank is the position of a value in the sorted list.
If multiple values are equal, their ranks are averaged and assigned to each equal value.

A Mann-Whitney U Test / Wilcoxon Rank Sum Test tests a null hypothesis that every value in either group A or B is drawn from the same population distribution of values.
The U test statistic is the number of pairs of values in which the value for group B precedes the value for group A.
For a given U test statistic, the p value associated with that U statistic is
the probability, when assuming the null hypothesis is true,
of observing a U statistic at least as extreme as the calculated U statistic.
p values are computed with the normal approximation with a correction for ties and without a continuity correction,
so that groups as small as 3 animals that are fully separated yield p values less than 0.05.

If any value of a variable is missing, in either group, no statistic is computed for that variable.
Missing observations are not excluded.
If a group has no values, the comparison raises `InsufficientGroupSize`, and the catalog records a row that is not computed.
If all values are tied, the rank-sum test is undefined and no statistic is computed.

This module optionally removes variability due to log10 dose before comparing, by comparing residuals of
an ordinary least squares model of value vs. log10 dose.

Usage
-----
python -m NHP_TB_analysis.immune_analysis.compare_groups --root . --max-workers 8
'''

from concurrent.futures import ThreadPoolExecutor
import argparse
import logging

import numpy as np
import pandas as pd
import scipy.stats as ss
import statsmodels.formula.api as smf

from NHP_TB_analysis.config import NOT_PROTECTED, PROTECTED, Paths
from NHP_TB_analysis.data_processing.cohorts import label_cohorts
from NHP_TB_analysis.data_processing.data_loading import load_study_tables
from NHP_TB_analysis.exceptions import AmbiguousVariable, AnalysisError, InsufficientGroupSize
from NHP_TB_analysis.immune_analysis.multiple_testing import add_fdr_columns
from NHP_TB_analysis.immune_analysis.results import (
    Computed,
    GroupDifference,
    NotComputed,
    divide,
    group_difference_to_row
)
from NHP_TB_analysis.immune_analysis.variable_selection import MatchMode, group_rows_by_variable, select_variable


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


MINIMUM_NUMBER_OF_VALUES_PER_GROUP = 1

# An ordinary least squares model with an intercept and a slope needs at least 1 residual degree of freedom.
MINIMUM_NUMBER_OF_ANIMALS_FOR_ADJUSTMENT = 3


def compare_groups(values, group_labels, group_a = PROTECTED, group_b = NOT_PROTECTED):
    '''
    Compare values labeled `group_a` with values labeled `group_b`.

    Returns
    -------
    `NotComputed` if any value is missing or all values are tied; otherwise `Computed` wrapping a `GroupDifference`.

    Raises
    ------
    ValueError -- if values and labels differ in length or a label is neither `group_a` nor `group_b`
    InsufficientGroupSize -- if a group has no values
    '''
    values = pd.Series(values, dtype = float).reset_index(drop = True)
    group_labels = pd.Series(group_labels, dtype = object).reset_index(drop = True)
    if len(values) != len(group_labels):
        raise ValueError(f"There are {len(values)} values and {len(group_labels)} group labels.")
    unexpected_labels = set(group_labels) - {group_a, group_b}
    if unexpected_labels:
        raise ValueError(f"Labels {sorted(map(str, unexpected_labels))} are neither {group_a} nor {group_b}.")

    number_of_missing_values = int(values.isna().sum())
    if number_of_missing_values:
        return NotComputed(f"{number_of_missing_values} missing values")

    values_a = values[group_labels == group_a].to_numpy()
    values_b = values[group_labels == group_b].to_numpy()
    if len(values_a) < MINIMUM_NUMBER_OF_VALUES_PER_GROUP or len(values_b) < MINIMUM_NUMBER_OF_VALUES_PER_GROUP:
        raise InsufficientGroupSize(
            f"Group {group_a} has {len(values_a)} values and group {group_b} has {len(values_b)} values; "
            f"each group needs at least {MINIMUM_NUMBER_OF_VALUES_PER_GROUP}."
        )
    if values.nunique() == 1:
        return NotComputed("rank-sum test is undefined: all values are tied")

    mean_a, mean_b = float(np.mean(values_a)), float(np.mean(values_b))
    median_a, median_b = float(np.median(values_a)), float(np.median(values_b))
    U, p = ss.mannwhitneyu(values_a, values_b, use_continuity = False, alternative = "two-sided", method = "asymptotic")
    if not np.isfinite(p):
        return NotComputed("rank-sum test is undefined")
    return Computed(
        GroupDifference(
            group_a = group_a,
            group_b = group_b,
            n_a = len(values_a),
            n_b = len(values_b),
            mean_a = mean_a,
            mean_b = mean_b,
            median_a = median_a,
            median_b = median_b,
            mean_difference = mean_a - mean_b,
            median_difference = median_a - median_b,
            mean_ratio = divide(mean_a, mean_b),
            median_ratio = divide(median_a, median_b),
            U_statistic = float(U),
            pvalue = float(p)
        )
    )


def residualize_on_dose(data_frame_of_values_and_doses: pd.DataFrame) -> pd.Series:
    '''
    Provide residuals of an ordinary least squares model of value vs. log10 dose.
    '''
    model = smf.ols("value ~ log10_dose", data = data_frame_of_values_and_doses).fit()
    return model.resid


def compare_variable(
    rows: pd.DataFrame,
    animals_and_cohorts: pd.DataFrame,
    group_col: str = "protection_outcome",
    group_a = PROTECTED,
    group_b = NOT_PROTECTED,
    adjust_covariates: bool = False
):
    '''
    Compare the values of 1 variable between groups of animals.
    Animals without a label of group A or B are not part of the comparison.
    '''
    labels = animals_and_cohorts[["animal_id", group_col] + (["log10_dose"] if adjust_covariates else [])]
    sub = rows[["animal_id", "value"]].merge(labels, how = "inner", on = "animal_id")
    sub = sub[sub[group_col].astype(object).isin([group_a, group_b])]
    if adjust_covariates and sub["value"].notna().all():
        if len(sub) < MINIMUM_NUMBER_OF_ANIMALS_FOR_ADJUSTMENT:
            return NotComputed("too few animals for dose adjustment")
        if sub["log10_dose"].isna().any():
            return NotComputed("missing log10 doses for adjustment")
        sub = sub.assign(value = residualize_on_dose(sub).loc[sub.index])
    return compare_groups(sub["value"], sub[group_col].astype(object), group_a, group_b)


def _compare_variable_safely(variable, rows, animals_and_cohorts, group_col, group_a, group_b, adjust_covariates):
    try:
        return compare_variable(rows, animals_and_cohorts, group_col, group_a, group_b, adjust_covariates)
    except AnalysisError as exception:
        logger.info(f"Variable {variable} was not compared: {exception}")
        return NotComputed(f"{type(exception).__name__}: {exception}")


def select_rows_of_animals(rows: pd.DataFrame, variable: str, match_mode, exclude_rule = None) -> pd.DataFrame:
    '''
    Provide rows of a variable with 1 row per animal.

    Raises
    ------
    AmbiguousVariable -- if a pair of animal ID and key is duplicated, or if an animal has more than 1 row,
        e.g. because a short key spans several time points
    '''
    rows = select_variable(rows, variable, match_mode, exclude_rule)
    duplicated_animals = sorted(set(rows.loc[rows["animal_id"].duplicated(), "animal_id"]))
    if duplicated_animals:
        raise AmbiguousVariable(
            f"Animals {duplicated_animals} have more than 1 value of variable {variable}. "
            f"Select 1 time point per animal before comparing groups."
        )
    return rows


def compare_groups_across_catalog(
    immune_variables: pd.DataFrame,
    animals_and_cohorts: pd.DataFrame,
    list_of_variables: list[str] | None = None,
    variable_column: str = "key",
    group_col: str = "protection_outcome",
    group_a = PROTECTED,
    group_b = NOT_PROTECTED,
    adjust_covariates: bool = False,
    max_workers: int = 1,
    exclude_rule = None
) -> pd.DataFrame:
    '''
    Compare groups for every variable and provide a data frame with exactly 1 row per requested variable,
    with FDRs over the computed p values of this batch, sorted by p value.

    Variables are full keys by default and are selected by exact key.
    Variables may be short keys only with a rule excluding rows such as `exclude_nAUC`;
    otherwise ValueError is raised, since rows of a short key include the nAUC summary.
    A variable with more than 1 row for an animal, whose group is empty, or which has missing values
    has a row with status "not computed" and a reason.
    Comparisons of variables are independent and run in a pool of `max_workers` threads.
    '''
    if variable_column == "key":
        match_mode = MatchMode.EXACT_KEY
    elif variable_column == "short_key":
        if exclude_rule is None:
            raise ValueError(
                "Comparing short keys without a rule excluding nAUC rows is unsafe. Provide a rule such as `exclude_nAUC`."
            )
        match_mode = MatchMode.SHORT_KEY_ALL_TIMEPOINTS
    else:
        raise ValueError(f"Variables are identified by column key or short_key, not {variable_column}.")
    if list_of_variables is None:
        list_of_variables = list(pd.unique(immune_variables[variable_column]))
    dictionary_of_variables_and_rows = group_rows_by_variable(
        immune_variables[immune_variables[variable_column].isin(list_of_variables)],
        column = variable_column
    )

    def analyze(variable):
        rows = dictionary_of_variables_and_rows.get(variable)
        if rows is None:
            return NotComputed("variable is absent from table of immune variables")
        try:
            rows = select_rows_of_animals(rows, variable, match_mode, exclude_rule)
        except AnalysisError as exception:
            logger.info(f"Variable {variable} was not compared: {exception}")
            return NotComputed(f"{type(exception).__name__}: {exception}")
        return _compare_variable_safely(variable, rows, animals_and_cohorts, group_col, group_a, group_b, adjust_covariates)

    logger.info(f"Groups {group_a} and {group_b} will be compared for {len(list_of_variables)} variables.")
    if max_workers > 1:
        with ThreadPoolExecutor(max_workers = max_workers) as executor:
            list_of_results = list(executor.map(analyze, list_of_variables))
    else:
        list_of_results = [analyze(variable) for variable in list_of_variables]

    # All p values of the batch are collected before FDRs are computed.
    stat_df = pd.DataFrame(
        [group_difference_to_row(variable, result) for variable, result in zip(list_of_variables, list_of_results)]
    )
    return add_fdr_columns(stat_df, f"{group_a} vs. {group_b}")


def summarize_by_group(
    immune_variables: pd.DataFrame,
    animals_and_cohorts: pd.DataFrame,
    group_col: str = "protection_outcome",
    variable_column: str = "key"
) -> pd.DataFrame:
    '''
    Provide descriptive statistics of values of every variable for every group:
    numbers of values and missing values, mean, standard deviation, median, and first and third quartiles.
    '''
    df = immune_variables.merge(animals_and_cohorts[["animal_id", group_col]], how = "inner", on = "animal_id")
    df = df[df[group_col].notna()]
    grouped = df.groupby([variable_column, group_col], sort = True, observed = True)["value"]
    summary = grouped.agg(
        n = "count",
        n_missing = lambda series: int(series.isna().sum()),
        mean = "mean",
        sd = "std",
        median = "median",
        q1 = lambda series: series.quantile(0.25),
        q3 = lambda series: series.quantile(0.75)
    ).reset_index()
    logger.info(f"Descriptive statistics were computed for {summary[variable_column].nunique()} variables and {summary[group_col].nunique()} groups.")
    return summary


def main():
    '''
    Compare immune variables of protected animals and animals that were not protected.
    '''
    parser = argparse.ArgumentParser(description = "Compare immune variables by protection outcome.")
    parser.add_argument("--root", default = None, help = "Directory containing directory `data`.")
    parser.add_argument("--adjust-covariates", action = "store_true", help = "Regress out log10 dose before rank tests.")
    parser.add_argument("--max-workers", type = int, default = 1, help = "Number of threads comparing variables.")
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
    animals_and_cohorts = label_cohorts(tables.animal_metadata, strict = args.strict)
    comparisons = compare_groups_across_catalog(
        tables.immune_variables,
        animals_and_cohorts,
        adjust_covariates = args.adjust_covariates,
        max_workers = args.max_workers
    )
    comparisons.to_csv(paths.comparisons_of_protected_and_not_protected_animals, index = False)
    logger.info(f"Comparisons were saved to {paths.comparisons_of_protected_and_not_protected_animals}.")


if __name__ == "__main__":
    main()
