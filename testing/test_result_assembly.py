'''
Usage
pytest -q testing/test_result_assembly.py

Verify that descriptors are attached to tables of results without dropping or duplicating rows.
'''

import pandas as pd
from pandas.testing import assert_frame_equal
import pytest

from NHP_TB_analysis.data_processing.variable_keys import parse_variable_catalog
from NHP_TB_analysis.immune_analysis.compare_groups import compare_groups_across_catalog
from NHP_TB_analysis.immune_analysis.result_assembly import add_taxonomy, enrich, filter_results


SHORT_KEY = "BAL CD4 (IFNg+IL2+TNF+) %"


@pytest.fixture
def enriched_comparisons(study_tables, animals_and_cohorts) -> pd.DataFrame:
    comparisons = compare_groups_across_catalog(study_tables.immune_variables, animals_and_cohorts)
    return enrich(comparisons, study_tables.immune_variables, join_key = "key", result_column = "variable")


def test_that_rows_are_neither_dropped_nor_duplicated(study_tables, animals_and_cohorts, enriched_comparisons) -> None:
    comparisons = compare_groups_across_catalog(study_tables.immune_variables, animals_and_cohorts)
    assert len(enriched_comparisons) == len(comparisons)
    assert_frame_equal(enriched_comparisons[comparisons.columns], comparisons)


def test_that_descriptors_are_attached(enriched_comparisons) -> None:
    rows = enriched_comparisons.set_index("variable")
    assert rows.loc[SHORT_KEY + " week8", "tissue"] == "Lung"
    assert rows.loc[SHORT_KEY + " week8", "unit"] == "percentage"
    assert rows.loc[SHORT_KEY + " nAUC", "short_key"] == SHORT_KEY
    assert rows.loc["PBMC_CD8_IFNg+IL17-_count day2", "tissue"] == "Peripheral"


def test_filter_results(enriched_comparisons) -> None:
    in_lung = filter_results(enriched_comparisons, tissue = "Lung")
    assert len(in_lung) == 3
    assert set(in_lung["short_key"]) == {SHORT_KEY}
    assert filter_results(enriched_comparisons, tissue = "Peripheral", unit = "count")["variable"].tolist() == ["PBMC_CD8_IFNg+IL17-_count day2"]


def test_that_first_descriptor_wins() -> None:
    result_rows = pd.DataFrame({"key": ["k1", "k2", "k3"], "pvalue": [0.1, 0.2, 0.3]})
    descriptor_table = pd.DataFrame(
        {
            "key": ["k1", "k1", "k2"],
            "short_key": ["s1", "s1", "s2"],
            "tissue": ["Lung", "Peripheral", "Peripheral"],
            "unit": ["count", "count", "percentage"]
        }
    )
    enriched = enrich(result_rows, descriptor_table)
    assert enriched["key"].tolist() == ["k1", "k2", "k3"]
    assert enriched["tissue"].tolist()[:2] == ["Lung", "Peripheral"]
    assert enriched[["short_key", "tissue", "unit"]].iloc[2].isna().all()


def test_add_taxonomy(study_tables, enriched_comparisons) -> None:
    catalog = parse_variable_catalog(study_tables.immune_variables)
    with_taxonomy = add_taxonomy(enriched_comparisons, catalog)
    assert len(with_taxonomy) == len(enriched_comparisons)
    rows = with_taxonomy.set_index("variable")
    assert rows.loc[SHORT_KEY + " week4", "cell_subset"] == "CD4"
    assert rows.loc["PBMC_CD8_IFNg+IL17-_count day2", "boolean_combination"] == "IFNg+IL17-"
