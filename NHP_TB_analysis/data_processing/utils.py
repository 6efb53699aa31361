'''
Usage:
python -m NHP_TB_analysis.data_processing.utils data/gene_expression.csv --sample-col SampleID
'''


import argparse
import logging
import re

import numpy as np
import pandas as pd

from NHP_TB_analysis.config import (
    DICTIONARY_OF_CANONICAL_COLUMNS_AND_CANDIDATES,
    MAP_OF_ALIASES_TO_TIME_POINTS,
    NAUC_SENTINEL,
    TIME_POINTS
)


logger = logging.getLogger('data_processing.utils')


TIME_POINT_DTYPE = pd.CategoricalDtype(categories = TIME_POINTS + [NAUC_SENTINEL], ordered = True)

SEPARATORS_OF_SAMPLE_IDS = "_-."


def first_match(cols, candidates) -> str | None:
    return next((c for c in candidates if c in cols), None)


def heuristic_col_match(cols, keywords) -> str | None:
    lowered_cols = {col.lower(): col for col in cols}
    for key in keywords:
        for lcol, orig in lowered_cols.items():
            if key in lcol:
                return orig
    return None


def standardize_columns(df: pd.DataFrame, list_of_canonical_columns: list[str]) -> pd.DataFrame:
    '''
    Rename columns with alternative spellings to canonical names.
    A canonical column that is already present is never replaced.
    A column is renamed at most once.
    '''
    cols: list[str] = df.columns.tolist()
    dictionary_of_columns_and_canonical_columns = {}
    for canonical_column in list_of_canonical_columns:
        if canonical_column in cols:
            continue
        candidates = [
            c for c in DICTIONARY_OF_CANONICAL_COLUMNS_AND_CANDIDATES.get(canonical_column, [])
            if c not in dictionary_of_columns_and_canonical_columns and c not in list_of_canonical_columns
        ]
        column = first_match(cols, candidates)
        if column is None:
            lowered_candidates = {c.lower() for c in candidates}
            column = next((c for c in cols if c.lower() in lowered_candidates and c not in dictionary_of_columns_and_canonical_columns), None)
        if column is not None:
            dictionary_of_columns_and_canonical_columns[column] = canonical_column
            logger.info(f"Column {column} will be used as {canonical_column}.")
    return df.rename(columns = dictionary_of_columns_and_canonical_columns)


def clean_ID(ID) -> str | None:
    '''
    Provide an animal ID stripped of surrounding whitespace and upper-cased so that IDs from different tables join.
    '''
    if pd.isna(ID):
        return None
    ID = str(ID).strip()
    if re.fullmatch(r"\d+\.0", ID):
        ID = ID[:-2]
    return ID.upper()


def normalize_time_point(time_point) -> str | None:
    '''
    Translate a raw time point into one of the ordered time points or the nAUC sentinel.

    • "Week 4", "wk4", "4", and 4.0 → "week4"
    • "D2" and "day 2" → "day2"
    • "pre", "baseline", and "0" → "pre"
    • "nAUC" → "nAUC"
    • NA/blank or unrecognized values → None
    '''
    if pd.isna(time_point):
        return None
    s = str(time_point).strip()
    if s.lower() == NAUC_SENTINEL.lower():
        return NAUC_SENTINEL
    s = re.sub(r"\s+", "", s.lower())
    if re.fullmatch(r"-?\d+\.0", s):
        s = s[:-2]
    if s.startswith("day") and s[3:].isdigit():
        s = "d" + s[3:]
    return MAP_OF_ALIASES_TO_TIME_POINTS.get(s, None)


def normalize_time_points(series: pd.Series, strict: bool = True) -> pd.Series:
    '''
    Provide an ordered categorical series of normalized time points.
    '''
    normalized = series.map(normalize_time_point)
    unrecognized = sorted(set(series[normalized.isna() & series.notna()].astype(str)))
    if unrecognized:
        if strict:
            raise ValueError(f"Time points {unrecognized} are unrecognized.")
        logger.warning(f"Time points {unrecognized} are unrecognized and will be missing.")
    return normalized.astype(TIME_POINT_DTYPE)


def split_sample_ID(sample_ID) -> tuple[str | None, str | None]:
    '''
    Split a sample ID of the form <animal ID><separator><time point> into a cleaned animal ID and a normalized time point.
    The last separator whose suffix is a recognized time point is used, so animal IDs may themselves contain separators.
    '''
    if pd.isna(sample_ID):
        return None, None
    s = str(sample_ID).strip()
    for index in range(len(s) - 1, 0, -1):
        if s[index] in SEPARATORS_OF_SAMPLE_IDS:
            time_point = normalize_time_point(s[index + 1:])
            if time_point is not None and time_point != NAUC_SENTINEL:
                return clean_ID(s[:index]), time_point
    return clean_ID(s), None


def add_animal_IDs_and_time_points_of_samples(df: pd.DataFrame, sample_col: str = "sample_id") -> pd.DataFrame:
    pairs = [split_sample_ID(sample_ID) for sample_ID in df[sample_col]]
    df = df.copy()
    df["animal_id"] = [animal_ID for animal_ID, _ in pairs]
    df["time_point"] = pd.Series([time_point for _, time_point in pairs], index = df.index, dtype = object).astype(TIME_POINT_DTYPE)
    number_of_samples_without_time_points = int(df.loc[df["time_point"].isna(), sample_col].nunique())
    if number_of_samples_without_time_points:
        logger.warning(f"{number_of_samples_without_time_points} sample IDs do not encode a recognized time point.")
    return df


def to_numeric(series: pd.Series) -> pd.Series:
    '''
    Convert values to floats. Blank strings and "NA" become NaN; any other unparseable value raises.
    '''
    series = series.replace({"": np.nan, "NA": np.nan, "NaN": np.nan, "na": np.nan})
    return pd.to_numeric(series, errors = "raise").astype(float)


# This allows the module to be run directly for testing
if __name__ == "__main__":

    # Configure logging for direct execution.
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description = "Test splitting of sample IDs into animal IDs and time points.")
    parser.add_argument("expression_file", help = "Path to gene expression CSV file")
    parser.add_argument("--sample-col", help = "Column name for sample IDs")
    args = parser.parse_args()

    expression_data = pd.read_csv(args.expression_file)
    sample_col = args.sample_col or heuristic_col_match(expression_data.columns, ("sample",))
    sample_IDs = expression_data[sample_col].drop_duplicates()

    print(f"Found {len(sample_IDs)} sample IDs")
    print("First 5 splits:")
    for i, sample_ID in enumerate(sample_IDs):
        if i >= 5:
            break
        print(f"  {sample_ID} -> {split_sample_ID(sample_ID)}")
