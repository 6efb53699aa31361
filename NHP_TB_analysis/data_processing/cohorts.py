'''
`cohorts.py` derives categorical cohort labels of animals from raw metadata:
    - a dose bin from log10 dose of BCG and
    - a protection outcome from a raw outcome label or from total CFU after challenge.

Bins are half-open intervals [b_i, b_{i + 1}) between consecutive configured boundaries.
With boundaries 4.5, 5, 5.5, 6, 6.5, 7, and 8, a log10 dose of 5.5 is in bin "[5.5, 6.0)" and
a log10 dose of 8 or 4.4 is unassigned.
Boundaries are configuration and are never inferred from distributions of doses.
'''

import logging
import math

import numpy as np
import pandas as pd

from NHP_TB_analysis.config import (
    DOSE_BIN_BOUNDARIES,
    MAP_OF_RAW_OUTCOMES_TO_PROTECTION_OUTCOMES,
    NOT_PROTECTED,
    PROTECTED,
    PROTECTION_CFU_THRESHOLD
)


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


def check_boundaries(boundaries) -> list[float]:
    boundaries = [float(boundary) for boundary in boundaries]
    if len(boundaries) < 2:
        raise ValueError(f"At least 2 boundaries are required to define a dose bin. Boundaries are {boundaries}.")
    if any(not math.isfinite(boundary) for boundary in boundaries):
        raise ValueError(f"Boundaries {boundaries} must be finite.")
    if any(lower >= upper for lower, upper in zip(boundaries, boundaries[1:])):
        raise ValueError(f"Boundaries {boundaries} must be strictly increasing.")
    return boundaries


def make_dose_bin_labels(boundaries = DOSE_BIN_BOUNDARIES) -> list[str]:
    boundaries = check_boundaries(boundaries)
    return [f"[{lower}, {upper})" for lower, upper in zip(boundaries, boundaries[1:])]


def make_dose_bin_dtype(boundaries = DOSE_BIN_BOUNDARIES) -> pd.CategoricalDtype:
    return pd.CategoricalDtype(categories = make_dose_bin_labels(boundaries), ordered = True)


def bin_dose(log10_dose, boundaries = DOSE_BIN_BOUNDARIES) -> str | None:
    '''
    Provide the label of the half-open bin containing a log10 dose,
    or None if the dose is missing or outside [first boundary, last boundary).
    '''
    boundaries = check_boundaries(boundaries)
    if log10_dose is None or pd.isna(log10_dose):
        return None
    log10_dose = float(log10_dose)
    labels = make_dose_bin_labels(boundaries)
    for label, lower, upper in zip(labels, boundaries, boundaries[1:]):
        if lower <= log10_dose < upper:
            return label
    return None


def bin_doses(series_of_log10_doses: pd.Series, boundaries = DOSE_BIN_BOUNDARIES) -> pd.Series:
    dose_bins = series_of_log10_doses.map(lambda log10_dose: bin_dose(log10_dose, boundaries))
    return dose_bins.astype(make_dose_bin_dtype(boundaries))


def normalize_protection_outcome(raw_outcome) -> str | None:
    '''
    Translate a raw protection outcome into "protected" or "not protected".

    • "Protected", "P", "yes", True, and 1 → "protected"
    • "Not protected", "NP", "unprotected", "no", False, and 0 → "not protected"
    • NA/blank or unrecognized values → None
    '''
    if raw_outcome is None or (not isinstance(raw_outcome, str) and pd.isna(raw_outcome)):
        return None
    if isinstance(raw_outcome, (bool, np.bool_)):
        return PROTECTED if raw_outcome else NOT_PROTECTED
    s = str(raw_outcome).strip().lower()
    if s.endswith(".0"):
        s = s[:-2]
    return MAP_OF_RAW_OUTCOMES_TO_PROTECTION_OUTCOMES.get(s, None)


def label_protection_from_CFU(total_CFU, threshold = PROTECTION_CFU_THRESHOLD) -> str | None:
    if total_CFU is None or pd.isna(total_CFU):
        return None
    return PROTECTED if float(total_CFU) < threshold else NOT_PROTECTED


def label_cohorts(
    animal_metadata: pd.DataFrame,
    boundaries = DOSE_BIN_BOUNDARIES,
    threshold_of_CFU = PROTECTION_CFU_THRESHOLD,
    strict: bool = False
) -> pd.DataFrame:
    '''
    Provide a copy of animal metadata with columns `dose_bin` and `protection_outcome`.

    Raw protection outcomes are normalized.
    An animal without a raw protection outcome is labeled from total CFU when total CFU is present.
    '''
    df = animal_metadata.copy()
    df["dose_bin"] = bin_doses(df["log10_dose"], boundaries)

    if "protection_outcome" in df.columns:
        raw_outcomes = df["protection_outcome"]
        outcomes = raw_outcomes.map(normalize_protection_outcome)
        unrecognized = sorted(set(raw_outcomes[outcomes.isna() & raw_outcomes.notna()].astype(str)))
        if unrecognized:
            message = f"Protection outcomes {unrecognized} are unrecognized."
            if strict:
                raise ValueError(message)
            logger.warning(message + " They will be missing.")
    else:
        outcomes = pd.Series([None] * len(df), index = df.index, dtype = object)
    if "total_CFU" in df.columns:
        outcomes_from_CFU = df["total_CFU"].map(lambda total_CFU: label_protection_from_CFU(total_CFU, threshold_of_CFU))
        number_of_derived_outcomes = int((outcomes.isna() & outcomes_from_CFU.notna()).sum())
        if number_of_derived_outcomes:
            logger.info(f"Protection outcomes of {number_of_derived_outcomes} animals were derived from total CFU with threshold {threshold_of_CFU}.")
        outcomes = outcomes.where(outcomes.notna(), outcomes_from_CFU)
    df["protection_outcome"] = outcomes.astype(pd.CategoricalDtype(categories = [PROTECTED, NOT_PROTECTED]))

    number_of_unassigned_doses = int(df["dose_bin"].isna().sum())
    if number_of_unassigned_doses:
        logger.warning(f"{number_of_unassigned_doses} animals have log10 doses outside bins {make_dose_bin_labels(boundaries)} and are unassigned.")
    logger.info(
        "%d animals are protected, %d animals are not protected, and %d animals lack a protection outcome.",
        (df["protection_outcome"] == PROTECTED).sum(),
        (df["protection_outcome"] == NOT_PROTECTED).sum(),
        df["protection_outcome"].isna().sum()
    )
    return df


def tabulate_cohorts(animals_and_cohorts: pd.DataFrame) -> pd.DataFrame:
    '''
    Provide numbers of animals by dose bin and protection outcome, including empty combinations
    and a row of animals whose dose bin is unassigned.
    '''
    df = animals_and_cohorts.assign(
        dose_bin = animals_and_cohorts["dose_bin"].astype(object).fillna("unassigned"),
        protection_outcome = animals_and_cohorts["protection_outcome"].astype(object).fillna("unknown")
    )
    table = pd.crosstab(df["dose_bin"], df["protection_outcome"])
    list_of_dose_bins = list(animals_and_cohorts["dose_bin"].cat.categories)
    if (df["dose_bin"] == "unassigned").any():
        list_of_dose_bins.append("unassigned")
    list_of_outcomes = [PROTECTED, NOT_PROTECTED] + (["unknown"] if (df["protection_outcome"] == "unknown").any() else [])
    table = table.reindex(index = list_of_dose_bins, columns = list_of_outcomes, fill_value = 0)
    table.index.name = "dose_bin"
    table.columns.name = None
    return table.reset_index()
