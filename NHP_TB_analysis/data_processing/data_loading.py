'''
Usage:
python -m NHP_TB_analysis.data_processing.data_loading --root . --strict

`data_loading.py` loads and normalizes 4 tables:
    1. animal metadata with one row per animal or per animal and visit;
    2. a long table of immune variables with one row per animal and key;
    3. a long table of normalized counts of genes with one row per gene and sample; and
    4. a map of genes to modules with possibly many rows per gene.

Headers with alternative spellings are renamed to canonical names.
A table lacking a required column raises `MalformedInputSchema` and no further table is processed.
Animal IDs are stripped and upper-cased in every table so that tables join on animal ID.
Time points are translated to an ordered categorical of pre, day2, week2, week4, week8, week12, and nAUC.
Tissues and units of immune variables are translated to "Lung" / "Peripheral" and "count" / "percentage".
'''

from dataclasses import dataclass
from pathlib import Path
import argparse
import logging

import pandas as pd

from NHP_TB_analysis.config import (
    DICTIONARY_OF_TABLES_AND_REQUIRED_COLUMNS,
    MAP_OF_RAW_TISSUES_TO_TISSUES,
    MAP_OF_RAW_UNITS_TO_UNITS,
    NAUC_SENTINEL,
    Paths
)
from NHP_TB_analysis.data_processing.utils import (
    add_animal_IDs_and_time_points_of_samples,
    clean_ID,
    normalize_time_points,
    standardize_columns,
    to_numeric
)
from NHP_TB_analysis.exceptions import MalformedInputSchema


LIST_OF_OPTIONAL_COLUMNS_OF_ANIMAL_METADATA = ["granuloma_count", "total_CFU", "visit"]

LIST_OF_DESCRIPTOR_COLUMNS = ["tissue", "unit"]


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


@dataclass(frozen = True)
class StudyTables:
    animal_metadata: pd.DataFrame
    immune_variables: pd.DataFrame
    gene_expression: pd.DataFrame
    gene_module_map: pd.DataFrame


def check_required_columns(df: pd.DataFrame, name_of_table: str, list_of_required_columns: list[str] | None = None) -> None:
    if list_of_required_columns is None:
        list_of_required_columns = DICTIONARY_OF_TABLES_AND_REQUIRED_COLUMNS[name_of_table]
    list_of_missing_columns = [column for column in list_of_required_columns if column not in df.columns]
    if list_of_missing_columns:
        raise MalformedInputSchema(name_of_table, list_of_missing_columns, df.columns.tolist())


def standardize_and_check_columns(df: pd.DataFrame, name_of_table: str) -> pd.DataFrame:
    '''
    Rename headers of a table to canonical names and raise `MalformedInputSchema` if a required column is absent.
    Animal metadata may lack protection outcome if it has total CFU.
    '''
    list_of_required_columns = list(DICTIONARY_OF_TABLES_AND_REQUIRED_COLUMNS[name_of_table])
    list_of_canonical_columns = list_of_required_columns
    if name_of_table == "animal metadata":
        list_of_canonical_columns = list_of_required_columns + LIST_OF_OPTIONAL_COLUMNS_OF_ANIMAL_METADATA
    df = standardize_columns(df, list_of_canonical_columns)
    if name_of_table == "animal metadata" and "protection_outcome" not in df.columns and "total_CFU" in df.columns:
        list_of_required_columns.remove("protection_outcome")
    check_required_columns(df, name_of_table, list_of_required_columns)
    return df


def read_table(source) -> pd.DataFrame:
    '''
    Provide a data frame based on a path to a CSV or TSV file or a copy of a provided data frame.
    '''
    if isinstance(source, pd.DataFrame):
        return source.copy()
    path = Path(source)
    separator = '\t' if path.suffix.lower() in (".tsv", ".txt") else ','
    df = pd.read_csv(path, sep = separator)
    logger.info(f"Table {path} with {df.shape[0]} rows and {df.shape[1]} columns was read.")
    return df


def _normalize_labels(series: pd.Series, map_of_raw_labels_to_labels: dict, name: str) -> pd.Series:
    normalized = series.map(
        lambda label: map_of_raw_labels_to_labels.get(str(label).strip().lower(), str(label).strip()) if pd.notna(label) else None
    )
    unrecognized = sorted(set(normalized.dropna()) - set(map_of_raw_labels_to_labels.values()))
    if unrecognized:
        logger.warning(f"Values of {name} {unrecognized} are unrecognized and will be kept as they are.")
    return normalized


def normalize_animal_metadata(df: pd.DataFrame, strict: bool = False) -> pd.DataFrame:
    '''
    Provide animal metadata with one row per animal.

    Protection outcome may be absent if total CFU is present; cohort labeling derives it.
    Metadata with one row per animal and visit is collapsed after checking that
    values other than visit are constant for every animal.
    '''
    df = standardize_and_check_columns(df, "animal metadata")

    df = df.assign(animal_id = df["animal_id"].map(clean_ID))
    if df["animal_id"].isna().any():
        raise ValueError(f"{df['animal_id'].isna().sum()} rows of animal metadata lack animal IDs.")
    df["log10_dose"] = to_numeric(df["log10_dose"])
    for column in ["granuloma_count", "total_CFU"]:
        if column in df.columns:
            df[column] = to_numeric(df[column])

    list_of_per_animal_columns = [
        c for c in DICTIONARY_OF_TABLES_AND_REQUIRED_COLUMNS["animal metadata"] + LIST_OF_OPTIONAL_COLUMNS_OF_ANIMAL_METADATA
        if c in df.columns and c not in ("animal_id", "visit")
    ]
    numbers_of_distinct_values = df.groupby("animal_id")[list_of_per_animal_columns].nunique(dropna = False)
    inconsistent = numbers_of_distinct_values[(numbers_of_distinct_values > 1).any(axis = 1)]
    if not inconsistent.empty:
        message = f"Animals {inconsistent.index.tolist()} have values of {list_of_per_animal_columns} that differ between visits."
        if strict:
            raise ValueError(message)
        logger.warning(message + " The first row of each animal will be kept.")

    number_of_rows = len(df)
    df = (
        df.drop(columns = [c for c in ["visit"] if c in df.columns])
        .drop_duplicates(subset = ["animal_id"], keep = "first")
        .reset_index(drop = True)
    )
    logger.info(f"Animal metadata with {number_of_rows} rows was collapsed to {len(df)} animals.")
    return df


def normalize_immune_variables(df: pd.DataFrame, strict: bool = False) -> pd.DataFrame:
    '''
    Provide a long table of immune variables with cleaned animal IDs, normalized time points,
    tissues, and units, and numeric values.
    Rows whose key ends with the nAUC sentinel have time point nAUC.
    '''
    df = standardize_and_check_columns(df, "immune variables")

    df = df.assign(
        animal_id = df["animal_id"].map(clean_ID),
        key = df["key"].astype(str).str.strip(),
        short_key = df["short_key"].astype(str).str.strip(),
        value = to_numeric(df["value"])
    )
    indicator_of_nAUC = df["key"].str.endswith(NAUC_SENTINEL)
    raw_time_points = df["time_point"].astype(object).where(~indicator_of_nAUC, NAUC_SENTINEL)
    df["time_point"] = normalize_time_points(raw_time_points, strict = strict)
    df["tissue"] = _normalize_labels(df["tissue"], MAP_OF_RAW_TISSUES_TO_TISSUES, "tissue")
    df["unit"] = _normalize_labels(df["unit"], MAP_OF_RAW_UNITS_TO_UNITS, "unit")

    number_of_duplicates = int(df.duplicated(subset = ["animal_id", "key"]).sum())
    if number_of_duplicates:
        logger.warning(f"{number_of_duplicates} pairs of animal ID and key occur more than once. Selecting those variables will fail.")

    logger.info(
        "Table of immune variables has %d rows, %d keys, %d short keys, and %d animals.",
        len(df),
        df["key"].nunique(),
        df["short_key"].nunique(),
        df["animal_id"].nunique()
    )
    return df


def find_inconsistent_descriptors(immune_variables: pd.DataFrame) -> pd.DataFrame:
    '''
    Provide a data frame of short keys whose tissue or unit differ across the time points sharing that short key,
    with the numbers of distinct values of each descriptor.
    '''
    numbers_of_distinct_values = immune_variables.groupby("short_key")[LIST_OF_DESCRIPTOR_COLUMNS].nunique(dropna = False)
    return numbers_of_distinct_values[(numbers_of_distinct_values > 1).any(axis = 1)].reset_index()


def validate_descriptors(immune_variables: pd.DataFrame, strict: bool = False) -> pd.DataFrame:
    inconsistent = find_inconsistent_descriptors(immune_variables)
    if not inconsistent.empty:
        message = f"Short keys {inconsistent['short_key'].tolist()} have tissues or units that differ across time points."
        if strict:
            raise ValueError(message)
        logger.warning(message + " The first descriptor of each key will be used when assembling results.")
    else:
        logger.info("Tissues and units are constant across time points for every short key.")
    return inconsistent


def normalize_gene_expression(df: pd.DataFrame) -> pd.DataFrame:
    '''
    Provide a long table of normalized counts with animal IDs and time points parsed from sample IDs.
    '''
    df = standardize_and_check_columns(df, "gene expression")
    df = df.assign(
        gene_id = df["gene_id"].astype(str).str.strip(),
        sample_id = df["sample_id"].astype(str).str.strip(),
        count = to_numeric(df["count"])
    )
    df = add_animal_IDs_and_time_points_of_samples(df)
    logger.info(f"Table of gene expression has {df['gene_id'].nunique()} genes and {df['sample_id'].nunique()} samples.")
    return df


def normalize_gene_module_map(df: pd.DataFrame) -> pd.DataFrame:
    df = standardize_and_check_columns(df, "gene module map")
    df = (
        df[["gene_id", "module_id"]]
        .dropna()
        .astype(str)
        .apply(lambda column: column.str.strip())
        .drop_duplicates()
        .reset_index(drop = True)
    )
    logger.info(f"Gene module map has {len(df)} memberships of {df['gene_id'].nunique()} genes in {df['module_id'].nunique()} modules.")
    return df


def load_study_tables(
    animal_metadata,
    immune_variables,
    gene_expression,
    gene_module_map,
    strict: bool = False
) -> StudyTables:
    '''
    Load and normalize all 4 tables.
    Every source is either a path or a data frame.
    Schemas of all tables are checked before any table is normalized beyond renaming headers,
    so that no part of the pipeline runs against a malformed table.
    '''
    raw_tables = {
        "animal metadata": read_table(animal_metadata),
        "immune variables": read_table(immune_variables),
        "gene expression": read_table(gene_expression),
        "gene module map": read_table(gene_module_map)
    }
    for name_of_table, df in raw_tables.items():
        standardize_and_check_columns(df, name_of_table)

    immune_data = normalize_immune_variables(raw_tables["immune variables"], strict = strict)
    validate_descriptors(immune_data, strict = strict)
    return StudyTables(
        animal_metadata = normalize_animal_metadata(raw_tables["animal metadata"], strict = strict),
        immune_variables = immune_data,
        gene_expression = normalize_gene_expression(raw_tables["gene expression"]),
        gene_module_map = normalize_gene_module_map(raw_tables["gene module map"])
    )


def main():
    parser = argparse.ArgumentParser(description = "Load and normalize tables of animal metadata, immune variables, gene expression, and modules.")
    parser.add_argument("--root", default = None, help = "Directory containing directory `data`.")
    parser.add_argument("--strict", action = "store_true", help = "Abort if time points or descriptors are inconsistent.")
    args = parser.parse_args()

    paths = Paths(args.root)
    tables = load_study_tables(
        paths.animal_metadata,
        paths.immune_variables,
        paths.gene_expression,
        paths.gene_module_map,
        strict = args.strict
    )
    for name, df in vars(tables).items():
        logger.info("%s has %d rows and %d columns.", name, *df.shape)
    animals_without_immune_data = set(tables.animal_metadata["animal_id"]) - set(tables.immune_variables["animal_id"])
    logger.info(f"{len(animals_without_immune_data)} animals with metadata lack immune data: {sorted(animals_without_immune_data)}")


if __name__ == "__main__":
    main()
