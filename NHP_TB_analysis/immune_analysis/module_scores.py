'''
Usage:
python -m NHP_TB_analysis.immune_analysis.module_scores --root .

`module_scores.py` scores modules of co-expressed genes for every sample.
A score of a module for a sample is the mean of normalized counts of genes in that module, ignoring missing counts.
Genes absent from the map of genes to modules contribute to no score.
A gene may belong to multiple modules and contributes to each.
A module with no counted gene in a sample has no row for that sample; a missing row is not a score of 0.
'''

import argparse
import logging

import pandas as pd

from NHP_TB_analysis.config import Paths
from NHP_TB_analysis.data_processing.data_loading import normalize_gene_expression, normalize_gene_module_map, read_table
from NHP_TB_analysis.data_processing.utils import normalize_time_point


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


def score_modules(gene_counts: pd.DataFrame, gene_module_map: pd.DataFrame) -> pd.DataFrame:
    '''
    Provide a data frame with one row per reachable pair of sample and module and columns
    sample_id, module_id, score, and number_of_genes, plus animal_id and time_point when gene counts have them.
    Rows are sorted by sample ID and module ID so that scores do not depend on the order of rows of gene counts.
    '''
    list_of_sample_columns = ["sample_id"] + [c for c in ["animal_id", "time_point"] if c in gene_counts.columns]
    counted = gene_counts.loc[gene_counts["count"].notna(), list_of_sample_columns + ["gene_id", "count"]]
    data_frame_of_memberships_and_counts = counted.merge(
        gene_module_map[["gene_id", "module_id"]].drop_duplicates(),
        how = "inner",
        on = "gene_id"
    )
    number_of_unmapped_genes = gene_counts["gene_id"].nunique() - data_frame_of_memberships_and_counts["gene_id"].nunique()
    logger.info(f"{number_of_unmapped_genes} genes with counts belong to no module or have only missing counts.")

    # Sorting before aggregating fixes the order of floating point summation.
    data_frame_of_memberships_and_counts = data_frame_of_memberships_and_counts.sort_values(
        ["sample_id", "module_id", "gene_id", "count"],
        kind = "mergesort"
    )
    module_scores = (
        data_frame_of_memberships_and_counts
        .groupby(list_of_sample_columns + ["module_id"], sort = True, observed = True, dropna = False)
        .agg(
            score = ("count", "mean"),
            number_of_genes = ("gene_id", "nunique")
        )
        .reset_index()
        .sort_values(["sample_id", "module_id"])
        .reset_index(drop = True)
    )
    logger.info(f"{len(module_scores)} scores of {module_scores['module_id'].nunique()} modules for {module_scores['sample_id'].nunique()} samples were computed.")
    return module_scores


def select_module_score(module_scores: pd.DataFrame, module_id: str, time_point: str) -> pd.Series:
    '''
    Provide a series of scores of a module at a time point indexed by animal ID,
    for use as a reference series of correlations.
    The time point may be given in any recognized spelling, e.g. "Day 2" or "wk8".

    Raises
    ------
    ValueError -- if the time point is unrecognized, no animal has a score of the module at that time point,
        or an animal has more than 1 score
    '''
    normalized_time_point = normalize_time_point(time_point)
    if normalized_time_point is None:
        raise ValueError(f"Time point {time_point} is unrecognized.")
    selection = module_scores[(module_scores["module_id"] == module_id) & (module_scores["time_point"].astype(object) == normalized_time_point)]
    if selection.empty:
        raise ValueError(f"No animal has a score for module {module_id} at time point {normalized_time_point}.")
    if selection["animal_id"].duplicated().any():
        raise ValueError(f"Some animals have more than 1 sample with a score for module {module_id} at time point {normalized_time_point}.")
    return selection.set_index("animal_id")["score"].rename(f"{module_id} at {normalized_time_point}")


def main():
    parser = argparse.ArgumentParser(description = "Score modules of genes for every sample.")
    parser.add_argument("--root", default = None, help = "Directory containing directory `data`.")
    args = parser.parse_args()

    paths = Paths(args.root)
    paths.ensure_dependencies_for_pipeline_exist()
    gene_counts = normalize_gene_expression(read_table(paths.gene_expression))
    gene_module_map = normalize_gene_module_map(read_table(paths.gene_module_map))
    score_modules(gene_counts, gene_module_map).to_csv(paths.data_frame_of_module_scores, index = False)
    logger.info(f"Module scores were saved to {paths.data_frame_of_module_scores}.")


if __name__ == "__main__":
    main()
