'''
`variable_keys.py` parses short keys of immune variables once into structured keys so that
catalogs of variables are filtered by fields instead of by substrings of names.

A short key is a sequence of tokens separated by whitespace or underscores, e.g.
    "BAL CD4 Memory (IFNg+IL2-TNF+) %"  or  "PBMC_CD8_IFNg+IL17-_count".
    - A boolean combination is the text in parentheses or a token with at least 2 markers, e.g. "IFNg+IL2-TNF+".
      It is a sequence of cytokines, each followed by "+" (expressed) or "-" (not expressed).
    - A tissue is a token such as "BAL", "Lung", "PBMC", or "Blood".
    - A unit is a token such as "%", "pct", "freq", "count", or "#".
    - A cell subset is the remaining tokens, e.g. "CD4 Memory". Tokens like "CD4+" with 1 marker belong to the cell subset.
A tissue or unit in the table of immune variables takes precedence over a token in the short key.

This convention was inferred from observed keys. `parse_variable_catalog` parses every observed short key and
reports keys that do not follow the convention rather than guessing at their structure.
'''

from dataclasses import dataclass
import logging
import re

import pandas as pd

from NHP_TB_analysis.config import MAP_OF_RAW_TISSUES_TO_TISSUES, MAP_OF_RAW_UNITS_TO_UNITS


logging.basicConfig(
    level = logging.INFO,
    format = "%(asctime)s – %(levelname)s – %(message)s"
)
logger = logging.getLogger(__name__)


PATTERN_OF_PARENTHESIZED_COMBINATION = re.compile(r"\(([^()]*)\)")
PATTERN_OF_COMBINATION = re.compile(r"(?:[A-Za-z0-9γαβ./]+[+-]){2,}")
PATTERN_OF_MARKER = re.compile(r"([A-Za-z0-9γαβ./]+)([+-])")
PATTERN_OF_SEPARATORS = re.compile(r"[\s_|]+")


@dataclass(frozen = True)
class VariableKey:
    short_key: str
    cell_subset: str
    boolean_combination: tuple[tuple[str, bool], ...]
    tissue: str | None
    unit: str | None

    @property
    def cytokine_set(self) -> frozenset[str]:
        '''
        Cytokines expressed in the boolean combination.
        '''
        return frozenset(cytokine for cytokine, is_expressed in self.boolean_combination if is_expressed)

    @property
    def cytokines(self) -> frozenset[str]:
        '''
        Cytokines named in the boolean combination whether expressed or not.
        '''
        return frozenset(cytokine for cytokine, _ in self.boolean_combination)

    def format_boolean_combination(self) -> str:
        return ''.join(f"{cytokine}{'+' if is_expressed else '-'}" for cytokine, is_expressed in self.boolean_combination)


def parse_boolean_combination(text: str) -> tuple[tuple[str, bool], ...]:
    text = re.sub(r"\s+", "", text)
    markers = PATTERN_OF_MARKER.findall(text)
    if not markers or ''.join(name + sign for name, sign in markers) != text:
        raise ValueError(f"Boolean combination {text!r} is not a sequence of cytokines each followed by + or -.")
    names = [name for name, _ in markers]
    if len(set(names)) != len(names):
        raise ValueError(f"Boolean combination {text!r} names a cytokine more than once.")
    return tuple((name, sign == '+') for name, sign in markers)


def parse_variable_key(short_key: str, tissue: str | None = None, unit: str | None = None) -> VariableKey:
    '''
    Parse a short key into a `VariableKey`. Raise ValueError if the short key does not follow the convention.
    '''
    text = str(short_key).strip()
    if not text:
        raise ValueError("Short key is empty.")

    parenthesized = PATTERN_OF_PARENTHESIZED_COMBINATION.findall(text)
    if len(parenthesized) > 1:
        raise ValueError(f"Short key {short_key!r} has more than 1 parenthesized group.")
    combination = ()
    if parenthesized:
        combination = parse_boolean_combination(parenthesized[0])
        text = PATTERN_OF_PARENTHESIZED_COMBINATION.sub(' ', text)

    list_of_subset_tokens = []
    tissue_from_key = None
    unit_from_key = None
    for token in PATTERN_OF_SEPARATORS.split(text):
        if not token:
            continue
        lowered = token.lower()
        if lowered in MAP_OF_RAW_TISSUES_TO_TISSUES and tissue_from_key is None:
            tissue_from_key = MAP_OF_RAW_TISSUES_TO_TISSUES[lowered]
        elif lowered in MAP_OF_RAW_UNITS_TO_UNITS and unit_from_key is None:
            unit_from_key = MAP_OF_RAW_UNITS_TO_UNITS[lowered]
        elif PATTERN_OF_COMBINATION.fullmatch(token):
            if combination:
                raise ValueError(f"Short key {short_key!r} has more than 1 boolean combination.")
            combination = parse_boolean_combination(token)
        else:
            list_of_subset_tokens.append(token)

    if not list_of_subset_tokens:
        raise ValueError(f"Short key {short_key!r} names no cell subset.")

    return VariableKey(
        short_key = str(short_key),
        cell_subset = ' '.join(list_of_subset_tokens),
        boolean_combination = combination,
        tissue = tissue if tissue is not None and not pd.isna(tissue) else tissue_from_key,
        unit = unit if unit is not None and not pd.isna(unit) else unit_from_key
    )


def parse_variable_catalog(immune_variables: pd.DataFrame, strict: bool = False) -> pd.DataFrame:
    '''
    Provide a data frame with one row per observed short key and columns
    short_key, variable_key (a `VariableKey` or None), cell_subset, boolean_combination, cytokine_set, tissue, unit, and parsed.
    The first tissue and unit of each short key are used.
    Short keys that do not follow the convention have parsed False, are logged, and raise ValueError if strict.
    '''
    descriptors = immune_variables.drop_duplicates(subset = ["short_key"], keep = "first")
    list_of_rows = []
    list_of_unparsed_short_keys = []
    for short_key, tissue, unit in zip(descriptors["short_key"], descriptors["tissue"], descriptors["unit"]):
        try:
            variable_key = parse_variable_key(short_key, tissue, unit)
        except ValueError as exception:
            logger.warning(f"Short key {short_key} could not be parsed: {exception}")
            list_of_unparsed_short_keys.append(short_key)
            list_of_rows.append(
                dict(
                    short_key = short_key,
                    variable_key = None,
                    cell_subset = None,
                    boolean_combination = None,
                    cytokine_set = None,
                    tissue = tissue,
                    unit = unit,
                    parsed = False
                )
            )
            continue
        list_of_rows.append(
            dict(
                short_key = short_key,
                variable_key = variable_key,
                cell_subset = variable_key.cell_subset,
                boolean_combination = variable_key.format_boolean_combination(),
                cytokine_set = ','.join(sorted(variable_key.cytokine_set)),
                tissue = variable_key.tissue,
                unit = variable_key.unit,
                parsed = True
            )
        )
    if list_of_unparsed_short_keys and strict:
        raise ValueError(f"Short keys {list_of_unparsed_short_keys} do not follow the convention of short keys.")
    catalog = pd.DataFrame(
        list_of_rows,
        columns = ["short_key", "variable_key", "cell_subset", "boolean_combination", "cytokine_set", "tissue", "unit", "parsed"]
    )
    logger.info(f"{int(catalog['parsed'].sum())} of {len(catalog)} short keys were parsed.")
    return catalog


def filter_catalog(
    catalog: pd.DataFrame,
    tissue: str | None = None,
    unit: str | None = None,
    cell_subset: str | None = None,
    cytokines = None,
    exact_cytokine_set: bool = False
) -> pd.DataFrame:
    '''
    Provide rows of a parsed catalog whose variable keys have a provided tissue, unit, and cell subset and
    express all provided cytokines (or exactly the provided cytokines if `exact_cytokine_set`).
    Unparsed short keys never match.
    '''
    required_cytokines = frozenset(cytokines) if cytokines is not None else None

    def matches(variable_key) -> bool:
        if variable_key is None:
            return False
        if tissue is not None and variable_key.tissue != tissue:
            return False
        if unit is not None and variable_key.unit != unit:
            return False
        if cell_subset is not None and variable_key.cell_subset != cell_subset:
            return False
        if required_cytokines is not None:
            if exact_cytokine_set:
                return variable_key.cytokine_set == required_cytokines
            return required_cytokines <= variable_key.cytokine_set
        return True

    return catalog[catalog["variable_key"].map(matches).astype(bool)].reset_index(drop = True)
