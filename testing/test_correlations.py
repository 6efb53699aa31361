'''
Usage
pytest -q testing/test_correlations.py

Verify Spearman correlations of scores of modules and immune variables and Benjamini-Hochberg FDRs.
'''

import math

import numpy as np
import pandas as pd
from pandas.testing import assert_frame_equal
import pytest

from NHP_TB_analysis.exceptions import MissingJoinTarget
from NHP_TB_analysis.immune_analysis.correlations import (
    correlate,
    correlate_against_catalog,
    correlate_module_against_catalog
)
from NHP_TB_analysis.immune_analysis.module_scores import score_modules
from NHP_TB_analysis.immune_analysis.multiple_testing import add_fdr_columns, bh_fdr
from NHP_TB_analysis.immune_analysis.results import COMPUTED, NOT_COMPUTED


SHORT_KEY = "BAL CD4 (IFNg+IL2+TNF+) %"
KEY_OF_PBMC = "PBMC_CD8_IFNg+IL17-_count day2"


def test_that_monotonic_series_correlate_perfectly() -> None:
    index = ["A1", "A2", "A3", "A4", "A5"]
    result = correlate(pd.Series([1, 2, 3, 4, 5], index = index), pd.Series([10, 20, 30, 40, 50], index = index))
    assert result.status == COMPUTED
    assert result.value.n == 5
    assert result.value.rho == pytest.approx(1.0)
    assert result.value.pvalue < 1e-6


def test_that_series_join_on_animal_IDs() -> None:
    reference = pd.Series([1, 2, 3, 4], index = ["A1", "A2", "A3", "A4"])
    candidate = pd.Series([40, 30, np.nan, 10, 99], index = ["A1", "A2", "A3", "A4", "A9"])
    result = correlate(reference, candidate)
    assert result.value.n == 3
    assert result.value.rho == pytest.approx(-1.0)


def test_that_fewer_than_2_joined_rows_raise() -> None:
    with pytest.raises(MissingJoinTarget):
        correlate(pd.Series([1, 2], index = ["A1", "A2"]), pd.Series([5, 6], index = ["A2", "A3"]))


def test_that_constant_series_are_not_computed() -> None:
    index = ["A1", "A2", "A3", "A4", "A5"]
    result = correlate(pd.Series([1, 2, 3, 4, 5], index = index), pd.Series([3, 3, 3, 3, 3], index = index))
    assert result.status == NOT_COMPUTED
    assert "undefined" in result.reason


def test_that_constant_variables_have_n_0(study_tables) -> None:
    reference = pd.Series([1.0, 2.0, 3.0, 4.0, 5.0, 6.0], index = ["A1", "A2", "A3", "A4", "A5", "A6"])
    constant = study_tables.immune_variables.assign(value = 5.0)
    correlations = correlate_against_catalog(reference, constant, list_of_keys = [KEY_OF_PBMC])
    assert correlations["status"].iloc[0] == NOT_COMPUTED
    assert correlations["n"].iloc[0] == 0
    assert math.isnan(correlations["pvalue"].iloc[0])


def test_bh_fdr() -> None:
    pvalues = pd.Series([0.001, 0.01, 0.2, 0.5, 0.9])
    q = bh_fdr(pvalues)
    assert q.tolist() == pytest.approx([0.005, 0.025, 1 / 3, 0.625, 0.9])
    assert (q >= pvalues).all()
    assert q.is_monotonic_increasing


def test_that_bh_fdr_ignores_missing_p_values() -> None:
    q = bh_fdr(pd.Series([0.01, np.nan, 0.04]))
    assert q.iloc[0] == pytest.approx(0.02)
    assert math.isnan(q.iloc[1])
    assert q.iloc[2] == pytest.approx(0.04)


def test_add_fdr_columns() -> None:
    stat_df = pd.DataFrame({"key": ["a", "b", "c", "d"], "pvalue": [0.04, np.nan, 0.001, 0.3]})
    with_FDRs = add_fdr_columns(stat_df, "example")
    assert with_FDRs["key"].tolist() == ["c", "a", "d", "b"]
    assert with_FDRs["significant"].tolist() == [True, False, False, False]
    assert with_FDRs["suggestive"].tolist() == [False, True, False, False]


@pytest.fixture
def module_scores(study_tables):
    return score_modules(study_tables.gene_expression, study_tables.gene_module_map)


@pytest.fixture
def correlations(study_tables, module_scores) -> pd.DataFrame:
    return correlate_module_against_catalog(module_scores, "M1", "day2", study_tables.immune_variables)


def test_correlate_module_against_catalog(correlations) -> None:
    assert len(correlations) == 4
    assert set(correlations["module"]) == {"M1"}
    assert set(correlations["module_time_point"]) == {"day2"}
    rows = correlations.set_index("key")
    assert rows.loc[KEY_OF_PBMC, "rho"] == pytest.approx(1.0)
    assert rows.loc[KEY_OF_PBMC, "n"] == 6
    # The value of A6 at week 4 is missing.
    assert rows.loc[SHORT_KEY + " week4", "n"] == 5
    assert (correlations["status"] == COMPUTED).all()
    assert correlations["pvalue"].is_monotonic_increasing


def test_that_variables_without_joined_animals_have_n_0(study_tables, module_scores) -> None:
    reference = pd.Series([1.0, 2.0], index = ["A7", "A8"], name = "reference")
    correlations = correlate_against_catalog(reference, study_tables.immune_variables)
    assert len(correlations) == 4
    assert (correlations["status"] == NOT_COMPUTED).all()
    assert (correlations["n"] == 0).all()
    assert correlations["rho"].isna().all()
    assert correlations["FDR"].isna().all()


def test_that_FDRs_are_recomputed_for_every_batch(study_tables, module_scores, correlations) -> None:
    immune_variables = study_tables.immune_variables
    single = correlate_module_against_catalog(module_scores, "M1", "day2", immune_variables[immune_variables["key"] == SHORT_KEY + " week8"])
    assert len(single) == 1
    assert single["FDR"].iloc[0] == pytest.approx(single["pvalue"].iloc[0])
    in_batch = correlations.set_index("key").loc[SHORT_KEY + " week8"]
    assert in_batch["pvalue"] == pytest.approx(single["pvalue"].iloc[0])


def test_that_parallel_and_sequential_correlations_are_equal(study_tables, module_scores, correlations) -> None:
    in_parallel = correlate_module_against_catalog(module_scores, "M1", "day2", study_tables.immune_variables, max_workers = 4)
    assert_frame_equal(in_parallel, correlations)


def test_that_reference_may_be_a_data_frame(study_tables) -> None:
    reference = pd.DataFrame({"animal_id": ["A1", "A2", "A3", "A4", "A5", "A6"], "value": [6, 5, 4, 3, 2, 1]})
    correlations = correlate_against_catalog(reference, study_tables.immune_variables, list_of_keys = [KEY_OF_PBMC])
    assert correlations["rho"].iloc[0] == pytest.approx(-1.0)


def test_that_duplicated_reference_animals_raise(study_tables) -> None:
    reference = pd.Series([1.0, 2.0], index = ["A1", "A1"])
    with pytest.raises(ValueError, match = "more than 1 value"):
        correlate_against_catalog(reference, study_tables.immune_variables)
