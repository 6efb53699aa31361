import os
from pathlib import Path


# Boundaries of half-open bins [b_i, b_{i + 1}) of log10 dose of BCG in colony forming units.
DOSE_BIN_BOUNDARIES = [4.5, 5.0, 5.5, 6.0, 6.5, 7.0, 8.0]

# Ordered time points of immune measurements relative to vaccination.
TIME_POINTS = ["pre", "day2", "week2", "week4", "week8", "week12"]

# Alternative spellings of time points, including numeric encodings of weeks.
MAP_OF_ALIASES_TO_TIME_POINTS = {
    "pre": "pre",
    "prevax": "pre",
    "baseline": "pre",
    "0": "pre",
    "-4": "pre",
    "wk-4": "pre",
    "day2": "day2",
    "d2": "day2",
    "2d": "day2",
    "week2": "week2",
    "wk2": "week2",
    "w2": "week2",
    "2": "week2",
    "week4": "week4",
    "wk4": "week4",
    "w4": "week4",
    "4": "week4",
    "week8": "week8",
    "wk8": "week8",
    "w8": "week8",
    "8": "week8",
    "week12": "week12",
    "wk12": "week12",
    "w12": "week12",
    "12": "week12"
}

# Key of cumulative net area under curve summaries across time points.
NAUC_SENTINEL = "nAUC"

PROTECTED = "protected"
NOT_PROTECTED = "not protected"

MAP_OF_RAW_OUTCOMES_TO_PROTECTION_OUTCOMES = {
    "protected": PROTECTED,
    "p": PROTECTED,
    "yes": PROTECTED,
    "true": PROTECTED,
    "1": PROTECTED,
    "not protected": NOT_PROTECTED,
    "not_protected": NOT_PROTECTED,
    "unprotected": NOT_PROTECTED,
    "np": NOT_PROTECTED,
    "no": NOT_PROTECTED,
    "false": NOT_PROTECTED,
    "0": NOT_PROTECTED
}

# An animal is protected when total thoracic Mtb CFU after challenge is below this threshold.
PROTECTION_CFU_THRESHOLD = 100

MAP_OF_RAW_TISSUES_TO_TISSUES = {
    "lung": "Lung",
    "bal": "Lung",
    "lung/bal": "Lung",
    "airway": "Lung",
    "peripheral": "Peripheral",
    "blood": "Peripheral",
    "pbmc": "Peripheral",
    "peripheral/blood": "Peripheral"
}

MAP_OF_RAW_UNITS_TO_UNITS = {
    "count": "count",
    "counts": "count",
    "#": "count",
    "number": "count",
    "percentage": "percentage",
    "percent": "percentage",
    "pct": "percentage",
    "%": "percentage",
    "freq": "percentage",
    "frequency": "percentage"
}

DICTIONARY_OF_TABLES_AND_REQUIRED_COLUMNS = {
    "animal metadata": ["animal_id", "study_id", "log10_dose", "protection_outcome"],
    "immune variables": ["key", "short_key", "animal_id", "time_point", "tissue", "antigen", "unit", "value"],
    "gene expression": ["gene_id", "sample_id", "count"],
    "gene module map": ["gene_id", "module_id"]
}

# Header spellings seen in exported tables and the canonical column each resolves to.
DICTIONARY_OF_CANONICAL_COLUMNS_AND_CANDIDATES = {
    "animal_id": ["animal_id", "AnimalID", "animalid", "Animal", "animal", "ptid", "subject"],
    "study_id": ["study_id", "StudyID", "study", "Study", "protocol"],
    "log10_dose": ["log10_dose", "log10dose", "Log10Dose", "log_dose", "dose_log10"],
    "protection_outcome": ["protection_outcome", "protect_outcome", "protection", "Protection", "protected", "outcome"],
    "granuloma_count": ["granuloma_count", "granulomas", "Granulomas", "gran_count"],
    "total_CFU": ["total_CFU", "TotalCFU", "total_cfu", "CFU", "cfu"],
    "visit": ["visit", "Visit"],
    "key": ["key", "Key", "full_key"],
    "short_key": ["short_key", "ShortKey", "shortkey"],
    "time_point": ["time_point", "timepoint", "TimePoint", "time", "visit"],
    "tissue": ["tissue", "Tissue"],
    "antigen": ["antigen", "Antigen", "stim"],
    "unit": ["unit", "Unit", "units"],
    "value": ["value", "Value"],
    "gene_id": ["gene_id", "gene", "GeneID", "Gene", "symbol"],
    "sample_id": ["sample_id", "sampleid", "SampleID", "Sample", "sample"],
    "count": ["count", "normalized_count", "expression", "value"],
    "module_id": ["module_id", "module", "Module", "ModuleID"]
}

SIGNIFICANCE_THRESHOLD = 0.05
SUGGESTIVENESS_THRESHOLD = 0.20


class Paths():
    '''
    Class Paths is a template for a singleton that records dependencies and outputs of and ensures dependencies exist for
    `NHP_TB_analysis/pipeline.py`.
    '''

    def __init__(self, root = None):

        # NHP_TB_analysis
        # dependencies
        self.root = Path(root if root is not None else os.environ.get("NHP_TB_ANALYSIS_ROOT", "."))
        self.data = self.root / "data"
        # -----
        self.animal_metadata = self.data / "animal_metadata.csv"
        self.immune_variables = self.data / "immune_variables.csv"
        self.gene_expression = self.data / "gene_expression.csv"
        self.gene_module_map = self.data / "gene_module_map.csv"
        # outputs
        # <no files>

        # NHP_TB_analysis/pipeline.py
        # dependencies
        self.outputs_of_pipeline = self.root / "output/pipeline"
        # -----
        # self.animal_metadata, which is defined above
        # self.immune_variables, which is defined above
        # self.gene_expression, which is defined above
        # self.gene_module_map, which is defined above
        # outputs
        self.data_frame_of_animals_and_cohorts = self.outputs_of_pipeline / "data_frame_of_animals_and_cohorts.csv"
        self.data_frame_of_numbers_of_animals_by_dose_bin_and_protection_outcome = self.outputs_of_pipeline / "data_frame_of_numbers_of_animals_by_dose_bin_and_protection_outcome.csv"
        self.data_frame_of_module_scores = self.outputs_of_pipeline / "data_frame_of_module_scores.csv"
        self.data_frame_of_descriptive_statistics_by_variable_and_protection_outcome = self.outputs_of_pipeline / "data_frame_of_descriptive_statistics_by_variable_and_protection_outcome.csv"
        self.comparisons_of_protected_and_not_protected_animals = self.outputs_of_pipeline / "comparisons_of_protected_and_not_protected_animals.csv"
        # Files with names of the form correlations_of_{module}_at_{time point}_and_immune_variables.csv are created dynamically.


    def ensure_dependencies_for_pipeline_exist(self):
        os.makedirs(self.outputs_of_pipeline, exist_ok = True)
        for path in [self.animal_metadata, self.immune_variables, self.gene_expression, self.gene_module_map]:
            assert os.path.exists(path), f"The dependency of `NHP_TB_analysis/pipeline.py` `{path}` does not exist."


    def correlations_of_module_and_immune_variables(self, module, time_point):
        name_of_module = str(module).replace(' ', '_').replace('/', '_').replace('+', "plus")
        return self.outputs_of_pipeline / f"correlations_of_{name_of_module}_at_{time_point}_and_immune_variables.csv"


paths = Paths()
