#!/usr/bin/env python3
'''
Usage:
python -m NHP_TB_analysis.pipeline --root . --module M1 --time-point day2 --module M2 --time-point week2 --max-workers 8

`pipeline.py` runs every step of the analysis of immune correlates of protection:
    1. load and normalize animal metadata, immune variables, gene expression, and the map of genes to modules;
    2. label dose bins and protection outcomes of animals and count animals in each cohort;
    3. score modules of genes for every sample;
    4. summarize and compare every immune variable between protected animals and animals that were not protected;
    5. correlate scores of each requested module at each requested time point with every immune variable; and
    6. attach tissues, units, and short keys to every table of results.
Tables are written as CSV files to `output/pipeline` under the root directory.
'''

from dataclasses import dataclass, field
import argparse
import logging

import pandas as pd

from NHP_TB_analysis.config import DOSE_BIN_BOUNDARIES, PROTECTION_CFU_THRESHOLD, Paths
from NHP_TB_analysis.data_processing.cohorts import label_cohorts, tabulate_cohorts
from NHP_TB_analysis.data_processing.data_loading import load_study_tables
from NHP_TB_analysis.data_processing.variable_keys import parse_variable_catalog
from NHP_TB_analysis.immune_analysis.compare_groups import compare_groups_across_catalog, summarize_by_group
from NHP_TB_analysis.immune_analysis.correlations import correlate_module_against_catalog
from NHP_TB_analysis.immune_analysis.module_scores import score_modules
from NHP_TB_analysis.immune_analysis.result_assembly import add_taxonomy, enrich


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


@dataclass(frozen = True)
class PipelineResults:
    animals_and_cohorts: pd.DataFrame
    numbers_of_animals_by_dose_bin_and_protection_outcome: pd.DataFrame
    module_scores: pd.DataFrame
    descriptive_statistics: pd.DataFrame
    comparisons: pd.DataFrame
    dictionary_of_modules_and_time_points_and_correlations: dict = field(default_factory = dict)


def run_pipeline(
    animal_metadata,
    immune_variables,
    gene_expression,
    gene_module_map,
    list_of_modules_and_time_points: list[tuple[str, str]] | None = None,
    boundaries = DOSE_BIN_BOUNDARIES,
    threshold_of_CFU = PROTECTION_CFU_THRESHOLD,
    adjust_covariates: bool = False,
    max_workers: int = 1,
    strict: bool = False
) -> PipelineResults:
    '''
    Run every step of the analysis on 4 tables, each given as a path or a data frame, and provide all tables of results.
    '''
    tables = load_study_tables(animal_metadata, immune_variables, gene_expression, gene_module_map, strict = strict)
    catalog = parse_variable_catalog(tables.immune_variables, strict = strict)

    animals_and_cohorts = label_cohorts(tables.animal_metadata, boundaries, threshold_of_CFU, strict = strict)
    numbers_of_animals = tabulate_cohorts(animals_and_cohorts)
    logger.info("Numbers of animals by dose bin and protection outcome:\n%s", numbers_of_animals.to_string(index = False))

    module_scores = score_modules(tables.gene_expression, tables.gene_module_map)

    descriptive_statistics = summarize_by_group(tables.immune_variables, animals_and_cohorts)
    comparisons = compare_groups_across_catalog(
        tables.immune_variables,
        animals_and_cohorts,
        adjust_covariates = adjust_covariates,
        max_workers = max_workers
    )
    comparisons = add_taxonomy(enrich(comparisons, tables.immune_variables, join_key = "key", result_column = "variable"), catalog)

    dictionary_of_modules_and_time_points_and_correlations = {}
    for module_id, time_point in list_of_modules_and_time_points or []:
        correlations = correlate_module_against_catalog(
            module_scores,
            module_id,
            time_point,
            tables.immune_variables,
            max_workers = max_workers
        )
        dictionary_of_modules_and_time_points_and_correlations[(module_id, time_point)] = add_taxonomy(
            enrich(correlations, tables.immune_variables, join_key = "key"),
            catalog
        )

    return PipelineResults(
        animals_and_cohorts = animals_and_cohorts,
        numbers_of_animals_by_dose_bin_and_protection_outcome = numbers_of_animals,
        module_scores = module_scores,
        descriptive_statistics = descriptive_statistics,
        comparisons = comparisons,
        dictionary_of_modules_and_time_points_and_correlations = dictionary_of_modules_and_time_points_and_correlations
    )


def main():
    parser = argparse.ArgumentParser(description = "Analyze immune correlates of protection of macaques vaccinated with intravenous BCG.")
    parser.add_argument("--root", default = None, help = "Directory containing directory `data`. Defaults to $NHP_TB_ANALYSIS_ROOT or the working directory.")
    parser.add_argument("--module", action = "append", default = [], help = "ID of a module to correlate with immune variables. May be repeated.")
    parser.add_argument("--time-point", action = "append", default = [], help = "Time point of module scores for each --module.")
    parser.add_argument("--adjust-covariates", action = "store_true", help = "Regress out log10 dose before rank tests.")
    parser.add_argument("--max-workers", type = int, default = 1, help = "Number of threads analyzing variables.")
    parser.add_argument("--strict", action = "store_true", help = "Abort if time points, descriptors, outcomes, or short keys are inconsistent.")
    args = parser.parse_args()

    if len(args.module) != len(args.time_point):
        parser.error(f"{len(args.module)} modules and {len(args.time_point)} time points were provided. Provide 1 time point per module.")

    paths = Paths(args.root)
    paths.ensure_dependencies_for_pipeline_exist()

    results = run_pipeline(
        paths.animal_metadata,
        paths.immune_variables,
        paths.gene_expression,
        paths.gene_module_map,
        list_of_modules_and_time_points = list(zip(args.module, args.time_point)),
        adjust_covariates = args.adjust_covariates,
        max_workers = args.max_workers,
        strict = args.strict
    )

    results.animals_and_cohorts.to_csv(paths.data_frame_of_animals_and_cohorts, index = False)
    results.numbers_of_animals_by_dose_bin_and_protection_outcome.to_csv(paths.data_frame_of_numbers_of_animals_by_dose_bin_and_protection_outcome, index = False)
    results.module_scores.to_csv(paths.data_frame_of_module_scores, index = False)
    results.descriptive_statistics.to_csv(paths.data_frame_of_descriptive_statistics_by_variable_and_protection_outcome, index = False)
    results.comparisons.to_csv(paths.comparisons_of_protected_and_not_protected_animals, index = False)
    for (module_id, time_point), correlations in results.dictionary_of_modules_and_time_points_and_correlations.items():
        path = paths.correlations_of_module_and_immune_variables(module_id, time_point)
        correlations.to_csv(path, index = False)
        logger.info(f"Correlations of module {module_id} at {time_point} were saved to {path}.")
    logger.info(f"Tables of results were saved to {paths.outputs_of_pipeline}.")


if __name__ == "__main__":
    main()
