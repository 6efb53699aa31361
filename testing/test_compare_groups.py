'''
Usage
pytest -q testing/test_compare_groups.py

Verify comparisons of values of immune variables between protected animals and animals that were not protected.
'''

import math

import pandas as pd
from pandas.testing import assert_frame_equal
import pytest

from NHP_TB_analysis.config import NOT_PROTECTED, PROTECTED
from NHP_TB_analysis.exceptions import InsufficientGroupSize
from NHP_TB_analysis.immune_analysis.compare_groups import (
    compare_groups,
    compare_groups_across_catalog,
    summarize_by_group
)
from NHP_TB_analysis.immune_analysis.results import (
    COMPUTED,
    NOT_COMPUTED,
    UNDEFINED_RATIO,
    Computed,
    NotComputed,
    group_difference_to_row
)
from NHP_TB_analysis.immune_analysis.variable_selection import exclude_nAUC


SHORT_KEY = "BAL CD4 (IFNg+IL2+TNF+) %"
LABELS = [PROTECTED] * 3 + [NOT_PROTECTED] * 3


def test_that_separated_groups_differ() -> None:
    # Differences are A - B and ratios are A / B: means 12 and 2 give a difference of 10 and a ratio of 6.
    result = compare_groups([10, 12, 14, 1, 2, 3], LABELS)
    assert isinstance(result, Computed)
    difference = result.value
    assert difference.mean_difference == pytest.approx(10.0)
    assert difference.median_difference == pytest.approx(10.0)
    assert difference.mean_ratio == pytest.approx(6.0)
    assert difference.median_ratio == pytest.approx(6.0)
    assert difference.sample_size == 6
    assert difference.pvalue < 0.05


def test_that_direction_is_A_minus_B() -> None:
    difference = compare_groups([1, 2, 3, 4, 5, 6], LABELS).value
    assert difference.mean_difference == pytest.approx(-3.0)
    assert difference.mean_ratio == pytest.approx(0.4)


def test_that_order_of_animals_does_not_matter() -> None:
    shuffled = compare_groups([3, 12, 1, 14, 2, 10], [NOT_PROTECTED, PROTECTED, NOT_PROTECTED, PROTECTED, NOT_PROTECTED, PROTECTED])
    assert shuffled == compare_groups([10, 12, 14, 1, 2, 3], LABELS)


def test_that_any_missing_value_prevents_computation() -> None:
    result = compare_groups([10, 12, math.nan, 1, 2, 3], LABELS)
    assert isinstance(result, NotComputed)
    assert result.status == NOT_COMPUTED
    row = group_difference_to_row("variable", result)
    assert math.isnan(row["pvalue"])
    assert math.isnan(row["mean_difference"])
    assert row["reason"] == "1 missing values"


def test_that_empty_group_raises() -> None:
    with pytest.raises(InsufficientGroupSize):
        compare_groups([10, 12, 14], [PROTECTED] * 3)


def test_that_zero_denominator_yields_undefined_ratio() -> None:
    result = compare_groups([1, 2, 3, 0, 0, 0], LABELS)
    assert result.value.mean_ratio is UNDEFINED_RATIO
    assert result.value.median_ratio is UNDEFINED_RATIO
    assert result.value.mean_difference == pytest.approx(2.0)
    row = group_difference_to_row("variable", result)
    assert math.isnan(row["mean_ratio"])
    assert row["mean_ratio_is_defined"] is False


@pytest.mark.parametrize(
    "values, labels",
    [
        ([1, 2, 3], [PROTECTED, NOT_PROTECTED]),
        ([1, 2, 3], [PROTECTED, NOT_PROTECTED, "partially protected"])
    ]
)
def test_that_malformed_inputs_raise(values, labels) -> None:
    with pytest.raises(ValueError):
        compare_groups(values, labels)


@pytest.fixture
def comparisons(study_tables, animals_and_cohorts) -> pd.DataFrame:
    return compare_groups_across_catalog(study_tables.immune_variables, animals_and_cohorts)


def test_that_catalog_has_1_row_per_variable(comparisons) -> None:
    assert len(comparisons) == 4
    assert set(comparisons["variable"]) == {
        SHORT_KEY + " week8",
        SHORT_KEY + " week4",
        SHORT_KEY + " nAUC",
        "PBMC_CD8_IFNg+IL17-_count day2"
    }
    rows = comparisons.set_index("variable")
    assert rows.loc[SHORT_KEY + " week4", "status"] == NOT_COMPUTED
    assert rows.loc[SHORT_KEY + " week4", "reason"] == "1 missing values"
    assert rows.loc[SHORT_KEY + " week8", "status"] == COMPUTED
    assert rows.loc[SHORT_KEY + " week8", "mean_difference"] == pytest.approx(10.0)
    assert rows.loc[SHORT_KEY + " week8", "n"] == 6


def test_that_FDRs_cover_computed_variables(comparisons) -> None:
    computed = comparisons[comparisons["status"] == COMPUTED]
    assert (computed["FDR"] >= computed["pvalue"] - 1e-12).all()
    # 3 equal p values of about 0.0495 have FDRs equal to those p values.
    assert computed["FDR"].tolist() == pytest.approx(computed["pvalue"].tolist())
    assert computed["significant"].all()
    assert comparisons["pvalue"].tolist()[:3] == sorted(computed["pvalue"])
    assert comparisons["variable"].iloc[-1] == SHORT_KEY + " week4"
    assert math.isnan(comparisons["FDR"].iloc[-1])


def test_that_parallel_and_sequential_comparisons_are_equal(study_tables, animals_and_cohorts, comparisons) -> None:
    in_parallel = compare_groups_across_catalog(study_tables.immune_variables, animals_and_cohorts, max_workers = 4)
    assert_frame_equal(in_parallel, comparisons)


def test_that_failures_are_rows(study_tables, animals_and_cohorts) -> None:
    immune_variables = study_tables.immune_variables
    key = SHORT_KEY + " week8"
    duplicated = pd.concat([immune_variables, immune_variables[immune_variables["key"] == key].head(1)], ignore_index = True)
    comparisons = compare_groups_across_catalog(duplicated, animals_and_cohorts, list_of_variables = [key, "CD19 count week8"])
    assert comparisons["variable"].tolist() == [key, "CD19 count week8"]
    assert (comparisons["status"] == NOT_COMPUTED).all()
    assert comparisons["reason"].iloc[0].startswith("AmbiguousVariable")


def test_that_variables_with_1_group_are_not_computed(study_tables, animals_and_cohorts) -> None:
    immune_variables = study_tables.immune_variables
    only_protected = immune_variables[immune_variables["animal_id"].isin(["A1", "A2", "A3"])]
    comparisons = compare_groups_across_catalog(only_protected, animals_and_cohorts, list_of_variables = [SHORT_KEY + " week8"])
    assert comparisons["status"].iloc[0] == NOT_COMPUTED
    assert comparisons["reason"].iloc[0].startswith("InsufficientGroupSize")


def test_that_comparisons_may_be_adjusted_for_dose(study_tables, animals_and_cohorts) -> None:
    comparisons = compare_groups_across_catalog(
        study_tables.immune_variables,
        animals_and_cohorts,
        list_of_variables = [SHORT_KEY + " week8"],
        adjust_covariates = True
    )
    assert comparisons["status"].iloc[0] == COMPUTED
    assert 0 <= comparisons["pvalue"].iloc[0] <= 1


def test_that_dose_adjustment_needs_3_animals(study_tables, animals_and_cohorts) -> None:
    immune_variables = study_tables.immune_variables
    two_animals = immune_variables[immune_variables["animal_id"].isin(["A1", "A4"])]
    comparisons = compare_groups_across_catalog(
        two_animals,
        animals_and_cohorts,
        list_of_variables = [SHORT_KEY + " week8"],
        adjust_covariates = True
    )
    assert comparisons["status"].iloc[0] == NOT_COMPUTED
    assert comparisons["reason"].iloc[0] == "too few animals for dose adjustment"


def test_that_tied_values_are_not_computed() -> None:
    result = compare_groups([5] * 6, LABELS)
    assert isinstance(result, NotComputed)
    assert result.reason == "rank-sum test is undefined: all values are tied"


def test_that_constant_variables_are_rows_not_computed(study_tables, animals_and_cohorts) -> None:
    constant = study_tables.immune_variables.assign(value = 5.0)
    comparisons = compare_groups_across_catalog(constant, animals_and_cohorts)
    assert len(comparisons) == 4
    assert (comparisons["status"] == NOT_COMPUTED).all()
    assert comparisons["pvalue"].isna().all()
    assert comparisons["reason"].str.startswith("rank-sum test is undefined").all()


def test_that_short_keys_require_a_rule_excluding_nAUC(study_tables, animals_and_cohorts) -> None:
    with pytest.raises(ValueError, match = "unsafe"):
        compare_groups_across_catalog(study_tables.immune_variables, animals_and_cohorts, variable_column = "short_key")
    with pytest.raises(ValueError, match = "key or short_key"):
        compare_groups_across_catalog(study_tables.immune_variables, animals_and_cohorts, variable_column = "antigen")


def test_that_short_keys_spanning_time_points_are_not_computed(study_tables, animals_and_cohorts) -> None:
    comparisons = compare_groups_across_catalog(
        study_tables.immune_variables,
        animals_and_cohorts,
        variable_column = "short_key",
        exclude_rule = exclude_nAUC
    )
    rows = comparisons.set_index("variable")
    assert len(rows) == 2
    assert rows.loc[SHORT_KEY, "status"] == NOT_COMPUTED
    assert rows.loc[SHORT_KEY, "reason"].startswith("AmbiguousVariable")
    assert rows.loc["PBMC_CD8_IFNg+IL17-_count", "status"] == COMPUTED
    assert rows.loc["PBMC_CD8_IFNg+IL17-_count", "n"] == 6


def test_that_short_keys_exclude_nAUC(study_tables, animals_and_cohorts) -> None:
    immune_variables = study_tables.immune_variables
    without_week4 = immune_variables[immune_variables["key"] != SHORT_KEY + " week4"]
    comparisons = compare_groups_across_catalog(
        without_week4,
        animals_and_cohorts,
        list_of_variables = [SHORT_KEY],
        variable_column = "short_key",
        exclude_rule = exclude_nAUC
    )
    row = comparisons.iloc[0]
    assert row["status"] == COMPUTED
    # Only values at week 8 are compared; the nAUC summary of 100 to 600 is excluded.
    assert row["n"] == 6
    assert row["mean_a"] == pytest.approx(12.0)
    assert row["mean_b"] == pytest.approx(2.0)


def test_summarize_by_group(study_tables, animals_and_cohorts) -> None:
    summary = summarize_by_group(study_tables.immune_variables, animals_and_cohorts)
    rows = summary.set_index(["key", "protection_outcome"])
    assert rows.loc[(SHORT_KEY + " week8", PROTECTED), "mean"] == pytest.approx(12.0)
    assert rows.loc[(SHORT_KEY + " week8", NOT_PROTECTED), "median"] == pytest.approx(2.0)
    assert rows.loc[(SHORT_KEY + " week4", NOT_PROTECTED), "n"] == 2
    assert rows.loc[(SHORT_KEY + " week4", NOT_PROTECTED), "n_missing"] == 1
    assert len(summary) == 8
