'''
Small synthetic tables of 7 animals shared by tests.

Animals A1, A2, and A3 are protected; A4, A5, and A6 are not protected.
A7 has no protection outcome, total CFU below the threshold, a log10 dose outside all bins, and no immune data.
'''

import numpy as np
import pandas as pd
import pytest

from NHP_TB_analysis.data_processing.cohorts import label_cohorts
from NHP_TB_analysis.data_processing.data_loading import load_study_tables


LIST_OF_ANIMALS = ["A1", "A2", "A3", "A4", "A5", "A6"]

SHORT_KEY_OF_BAL = "BAL CD4 (IFNg+IL2+TNF+) %"
SHORT_KEY_OF_PBMC = "PBMC_CD8_IFNg+IL17-_count"


def make_rows_of_variable(key, short_key, time_point, tissue, unit, values, antigen = "PPD"):
    return pd.DataFrame(
        {
            "key": key,
            "short_key": short_key,
            "AnimalID": LIST_OF_ANIMALS,
            "timepoint": time_point,
            "tissue": tissue,
            "antigen": antigen,
            "unit": unit,
            "value": values
        }
    )


@pytest.fixture
def raw_animal_metadata() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "AnimalID": [" a1", "A2", "A3", "A4", "A5", "A6", "A7"],
            "study_id": ["IV-BCG"] * 7,
            "log10_dose": [4.6, 5.2, 5.5, 6.1, 6.7, 7.2, 8.0],
            "protection_outcome": ["P", "protected", "Protected", "NP", "not protected", "unprotected", None],
            "total_CFU": [10, 0, 50, 1000, 5000, 20000, 30]
        }
    )


@pytest.fixture
def raw_immune_variables() -> pd.DataFrame:
    return pd.concat(
        [
            make_rows_of_variable(SHORT_KEY_OF_BAL + " week8", SHORT_KEY_OF_BAL, "wk8", "BAL", "%", [10, 12, 14, 1, 2, 3]),
            make_rows_of_variable(SHORT_KEY_OF_BAL + " week4", SHORT_KEY_OF_BAL, "4", "BAL", "%", [5, 6, 7, 5, 6, np.nan]),
            make_rows_of_variable(SHORT_KEY_OF_BAL + " nAUC", SHORT_KEY_OF_BAL, None, "BAL", "%", [100, 200, 300, 400, 500, 600]),
            make_rows_of_variable(SHORT_KEY_OF_PBMC + " day2", SHORT_KEY_OF_PBMC, "D2", "blood", "count", [1, 2, 3, 4, 5, 6])
        ],
        ignore_index = True
    )


@pytest.fixture
def raw_gene_expression() -> pd.DataFrame:
    '''
    For animal i at day 2, G1 = i, G2 = i + 2, and G3 = 10 i, so that the score of M1 is i + 1.
    Sample A1_wk8 has G1 = 1 and a missing count of G2 and no count of G3, so it has a score of M1 and no score of M2.
    '''
    list_of_rows = []
    for i, animal in enumerate(LIST_OF_ANIMALS, start = 1):
        sample = f"{animal}_day2"
        list_of_rows += [
            (sample, "G1", float(i)),
            (sample, "G2", float(i + 2)),
            (sample, "G3", float(10 * i)),
            (sample, "G4", 7.0)
        ]
    list_of_rows += [("A1_wk8", "G1", 1.0), ("A1_wk8", "G2", np.nan)]
    return pd.DataFrame(list_of_rows, columns = ["SampleID", "gene_id", "count"])


@pytest.fixture
def raw_gene_module_map() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "gene": ["G1", "G2", "G2", "G3"],
            "module": ["M1", "M1", "M2", "M2"]
        }
    )


@pytest.fixture
def study_tables(raw_animal_metadata, raw_immune_variables, raw_gene_expression, raw_gene_module_map):
    return load_study_tables(raw_animal_metadata, raw_immune_variables, raw_gene_expression, raw_gene_module_map)


@pytest.fixture
def animals_and_cohorts(study_tables) -> pd.DataFrame:
    return label_cohorts(study_tables.animal_metadata)
