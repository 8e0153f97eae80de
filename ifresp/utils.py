"""Contains helper functions that do not depend on other modules within this package."""

import re
from typing import Iterable, List, Sequence, Tuple

import numpy
import pandas
import scipy.stats

from .types import MAX_CHAMBERS, InvalidPhaseLabel, UnsupportedChamberCount

_PHASE_NUMBER = re.compile(r"(\d+)")
_DO_COLUMN = re.compile(r"^do_(\d+)$")


def _check_columns(dataframe: pandas.DataFrame, required: Iterable[str], what: str) -> None:
    """Raises a `KeyError` naming all missing columns.

    Parameters
    ----------
    dataframe : pandas.DataFrame
        Table to check.
    required : iterable of str
        Column names that must be present.
    what : str
        Human readable name of the table.
    """
    missing = [col for col in required if col not in dataframe.columns]
    if missing:
        raise KeyError(f"The {what} is missing the columns {missing}.")


def _phase_index(label: str) -> int:
    """Extracts the period number embedded in a phase label.

    Parameters
    ----------
    label : str
        Phase label such as "M3".

    Returns
    -------
    index : int
        The embedded number, e.g. 3.

    Raises
    ------
    InvalidPhaseLabel
        If the label does not contain a number.
    """
    match = _PHASE_NUMBER.search(str(label))
    if match is None:
        raise InvalidPhaseLabel(f'Phase label "{label}" does not contain a period number.')
    return int(match.group(1))


def _ordered_phases(labels: Iterable[str]) -> List[str]:
    """Unique phase labels ordered by their embedded number."""
    return sorted(pandas.unique(pandas.Series(list(labels), dtype=object)), key=_phase_index)


def _count_chambers(wide: pandas.DataFrame) -> int:
    """Infers the number of chambers from the `temp_k`/`do_k` column pairs.

    Parameters
    ----------
    wide : pandas.DataFrame
        Wide table with one DO and one temperature column per chamber.

    Returns
    -------
    n_chambers : int
        Number of chambers in 1..8.

    Raises
    ------
    UnsupportedChamberCount
        If the columns do not describe 1..8 contiguously numbered chambers.
    """
    numbers = sorted(int(m.group(1)) for m in map(_DO_COLUMN.match, map(str, wide.columns)) if m)
    n_chambers = len(numbers)
    if not 1 <= n_chambers <= MAX_CHAMBERS:
        raise UnsupportedChamberCount(
            f"Found {n_chambers} chamber DO columns, but only 1 to {MAX_CHAMBERS} chambers are supported."
        )
    if numbers != list(range(1, n_chambers + 1)):
        raise UnsupportedChamberCount(f"Chamber columns must be numbered 1..{n_chambers}, got {numbers}.")
    missing_temp = [k for k in numbers if f"temp_{k}" not in wide.columns]
    if missing_temp:
        raise UnsupportedChamberCount(f"Temperature columns are missing for chambers {missing_temp}.")
    return n_chambers


def _fit_through_origin(x: Sequence[float], y: Sequence[float]) -> float:
    """Ordinary least squares slope of `y ~ x` without intercept.

    Parameters
    ----------
    x : array-like
        Independent variable.
    y : array-like
        Dependent variable.

    Returns
    -------
    coefficient : float
        The slope minimizing sum((y - coefficient * x)**2).

    Raises
    ------
    ValueError
        If `x` is empty or all zero.
    """
    x = numpy.asarray(x, dtype=float)
    y = numpy.asarray(y, dtype=float)
    sxx = numpy.dot(x, x)
    if len(x) == 0 or sxx == 0:
        raise ValueError("Need at least one non-zero time point for a regression through the origin.")
    return float(numpy.dot(x, y) / sxx)


def _fit_linear(x: Sequence[float], y: Sequence[float]) -> Tuple[float, float, float]:
    """Ordinary least squares fit of `y ~ x` with intercept.

    Parameters
    ----------
    x : array-like
        Independent variable.
    y : array-like
        Dependent variable.

    Returns
    -------
    slope : float
        Regression slope.
    stderr : float
        Standard error of the slope.
    r_squared : float
        Coefficient of determination.

    Raises
    ------
    ValueError
        If fewer than two distinct `x` values are given.
    """
    x = numpy.asarray(x, dtype=float)
    y = numpy.asarray(y, dtype=float)
    if len(numpy.unique(x)) < 2:
        raise ValueError("Need at least two distinct time points for a linear regression.")
    result = scipy.stats.linregress(x, y)
    return float(result.slope), float(result.stderr), float(result.rvalue**2)
