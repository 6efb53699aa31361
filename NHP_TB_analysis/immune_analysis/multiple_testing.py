'''
This module adjusts p values into False Discovery Rates (FDRs) with the Benjamini-Hochberg procedure.
p values p_i and any associated information are sorted in ascending order.
Each p value p_i is multiplied by the number of p values, divided by i, and clipped to 1.
The resulting series is corrected so that each value is at most as large as the following value.
The resulting series contains FDRs and may be added as a column next to the p values.

An FDR is a property of a whole batch of p values. FDRs are recomputed for every batch and
are never carried over from another batch.
Missing p values (variables that were not computed) are excluded from the batch and have missing FDRs.

A variable is significant if its FDR is less than or equal to 0.05.
A variable is suggestive if its FDR is greater than 0.05 and less than or equal to 0.20.
'''

import logging

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

from NHP_TB_analysis.config import SIGNIFICANCE_THRESHOLD, SUGGESTIVENESS_THRESHOLD


logger = logging.getLogger(__name__)


def bh_fdr(pvals: pd.Series) -> pd.Series:
    '''
    Provide a series of False Discovery Rates based on a series of p values.
    '''
    pvals = pd.Series(pvals, dtype = float)
    q = pd.Series(np.nan, index = pvals.index, dtype = float)
    indicator_of_presence = pvals.notna()
    if indicator_of_presence.any():
        _, array_of_q_values, _, _ = multipletests(pvals[indicator_of_presence], method = "fdr_bh")
        q[indicator_of_presence] = array_of_q_values
    return q


def add_fdr_columns(stat_df: pd.DataFrame, family: str, pvalue_column: str = "pvalue") -> pd.DataFrame:
    '''
    Provide a copy of a data frame with added columns FDR, significant, and suggestive, sorted by p value.
    Log numbers of variables that are significant / suggestive for a family of tests.
    '''
    stat_df = stat_df.copy()
    stat_df["FDR"] = bh_fdr(stat_df[pvalue_column])
    stat_df["significant"] = stat_df["FDR"] <= SIGNIFICANCE_THRESHOLD
    stat_df["suggestive"] = (stat_df["FDR"] > SIGNIFICANCE_THRESHOLD) & (stat_df["FDR"] <= SUGGESTIVENESS_THRESHOLD)
    logger.info(
        "[%s] %d/%d significant (FDR ≤ %.2f); %d additional suggestive (%.2f < FDR ≤ %.2f); %d not computed",
        family,
        stat_df["significant"].sum(),
        len(stat_df),
        SIGNIFICANCE_THRESHOLD,
        stat_df["suggestive"].sum(),
        SIGNIFICANCE_THRESHOLD,
        SUGGESTIVENESS_THRESHOLD,
        stat_df[pvalue_column].isna().sum()
    )
    return stat_df.sort_values(pvalue_column, na_position = "last", kind = "mergesort").reset_index(drop = True)
