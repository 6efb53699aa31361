'''
Tagged results of analyses of single variables.

Every analysis of a variable returns either `Computed`, wrapping a `GroupDifference` or a `Correlation`,
or `NotComputed`, recording why no statistic was computed.
Rows built from results carry `status` "computed" or "not computed" and a `reason`,
so that variables that failed are never confused with statistics near 0 or 1.
'''

from dataclasses import dataclass, field
import math


COMPUTED = "computed"
NOT_COMPUTED = "not computed"


class UndefinedRatio:
    '''
    Marker of a ratio whose denominator is 0.
    '''

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "UNDEFINED_RATIO"

    def __str__(self):
        return "undefined ratio"


UNDEFINED_RATIO = UndefinedRatio()


def divide(numerator: float, denominator: float):
    '''
    Provide numerator / denominator or `UNDEFINED_RATIO` if denominator is 0.
    '''
    if denominator == 0:
        return UNDEFINED_RATIO
    return numerator / denominator


@dataclass(frozen = True)
class GroupDifference:
    group_a: str
    group_b: str
    n_a: int
    n_b: int
    mean_a: float
    mean_b: float
    median_a: float
    median_b: float
    mean_difference: float
    median_difference: float
    mean_ratio: object
    median_ratio: object
    U_statistic: float
    pvalue: float

    @property
    def sample_size(self) -> int:
        return self.n_a + self.n_b


@dataclass(frozen = True)
class Correlation:
    n: int
    rho: float
    pvalue: float


@dataclass(frozen = True)
class Computed:
    value: object
    status: str = field(default = COMPUTED, init = False)


@dataclass(frozen = True)
class NotComputed:
    reason: str
    status: str = field(default = NOT_COMPUTED, init = False)


def _ratio_to_float(ratio) -> float:
    return math.nan if ratio is UNDEFINED_RATIO else ratio


def group_difference_to_row(variable: str, result) -> dict:
    '''
    Provide a row of a table of group differences for a variable and a `Computed` or `NotComputed` result.
    Undefined ratios are NaN with indicator `..._ratio_is_defined` False.
    '''
    row = dict(variable = variable, status = result.status, reason = None)
    if isinstance(result, NotComputed):
        row.update(
            n = math.nan,
            n_a = math.nan,
            n_b = math.nan,
            mean_a = math.nan,
            mean_b = math.nan,
            median_a = math.nan,
            median_b = math.nan,
            mean_difference = math.nan,
            median_difference = math.nan,
            mean_ratio = math.nan,
            mean_ratio_is_defined = None,
            median_ratio = math.nan,
            median_ratio_is_defined = None,
            U_statistic = math.nan,
            pvalue = math.nan,
            reason = result.reason
        )
        return row
    difference = result.value
    row.update(
        n = difference.sample_size,
        n_a = difference.n_a,
        n_b = difference.n_b,
        mean_a = difference.mean_a,
        mean_b = difference.mean_b,
        median_a = difference.median_a,
        median_b = difference.median_b,
        mean_difference = difference.mean_difference,
        median_difference = difference.median_difference,
        mean_ratio = _ratio_to_float(difference.mean_ratio),
        mean_ratio_is_defined = difference.mean_ratio is not UNDEFINED_RATIO,
        median_ratio = _ratio_to_float(difference.median_ratio),
        median_ratio_is_defined = difference.median_ratio is not UNDEFINED_RATIO,
        U_statistic = difference.U_statistic,
        pvalue = difference.pvalue
    )
    return row


def correlation_to_row(key: str, result) -> dict:
    '''
    Provide a row of a table of correlations. A correlation that is not computed has n 0 and NaN rho and p value.
    '''
    if isinstance(result, NotComputed):
        return dict(key = key, status = result.status, reason = result.reason, n = 0, rho = math.nan, pvalue = math.nan)
    correlation = result.value
    return dict(key = key, status = result.status, reason = None, n = correlation.n, rho = correlation.rho, pvalue = correlation.pvalue)
