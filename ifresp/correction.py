"""
Correction of metabolic rate measurements for background (microbial) respiration.
"""
import logging
import warnings
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy
import pandas

from . import utils
from .types import (
    INFO_COLUMNS,
    MEASUREMENT_COLUMNS,
    ConfigurationError,
    CorrectedMeasurements,
    CorrectionMethod,
    InsufficientData,
    InvalidChamber,
    MissingReferenceData,
    PositiveBackgroundRate,
)

_log = logging.getLogger(__file__)

# reference tests that each regression-based method needs
_REQUIRED_TESTS = {
    CorrectionMethod.PRE_TEST: ("pre",),
    CorrectionMethod.POST_TEST: ("post",),
    CorrectionMethod.AVERAGE: ("pre", "post"),
    CorrectionMethod.LINEAR: ("pre", "post"),
    CorrectionMethod.EXPONENTIAL: ("pre", "post"),
    CorrectionMethod.PARALLEL: (),
}


def interpolate_linear(coef_pre: float, coef_post: float, i: int, n_phases: int) -> float:
    """Linearly interpolates the background coefficient for measurement period `i`.

    Parameters
    ----------
    coef_pre : float
        Background coefficient of the pre-test.
    coef_post : float
        Background coefficient of the post-test.
    i : int
        Period index (the number in the phase label).
    n_phases : int
        Total number of measurement periods.

    Returns
    -------
    coefficient : float
        `(1 - i/(M+1)) * coef_pre + i/(M+1) * coef_post` with `M = n_phases`.
    """
    weight = i / (n_phases + 1)
    return (1 - weight) * coef_pre + weight * coef_post


def interpolate_exponential(coef_pre: float, coef_post: float, i: int, n_phases: int) -> float:
    """Geometrically interpolates the background coefficient for measurement period `i`.

    The per-period growth factor is `sign(r) * |r|**(1/(M+1))` with `r = coef_post / coef_pre`,
    so the sign of the ratio is kept even when the coefficients have opposite signs.

    Parameters
    ----------
    coef_pre : float
        Background coefficient of the pre-test.
    coef_post : float
        Background coefficient of the post-test.
    i : int
        Period index (the number in the phase label).
    n_phases : int
        Total number of measurement periods.

    Returns
    -------
    coefficient : float
        `coef_pre * factor**i`

    Raises
    ------
    InsufficientData
        When the pre-test coefficient is zero.
    """
    if coef_pre == 0:
        raise InsufficientData("The pre-test background coefficient is zero, exponential interpolation is undefined.")
    ratio = coef_post / coef_pre
    factor = numpy.sign(ratio) * numpy.abs(ratio) ** (1 / (n_phases + 1))
    return float(coef_pre * factor**i)


def _reshape_chamber(wide: pandas.DataFrame, k: int, info: pandas.DataFrame) -> pandas.DataFrame:
    """Converts the columns of chamber `k` into a long table with per-phase initial DO.

    Parameters
    ----------
    wide : pandas.DataFrame
        Wide measurement table.
    k : int
        1-based chamber number.
    info : pandas.DataFrame
        Chamber info table, row `k-1` describes chamber `k`.

    Returns
    -------
    long : pandas.DataFrame
        Rows of chamber `k`, ordered by phase index.
    """
    n = len(wide)
    chamber_info = info.iloc[k - 1]
    long = pandas.DataFrame(
        {
            "chamber_id": [f"CH{k}"] * n,
            "individual_id": [chamber_info["individual_id"]] * n,
            "mass_g": numpy.repeat(float(chamber_info["mass_g"]), n),
            "chamber_volume_ml": numpy.repeat(float(chamber_info["chamber_volume_ml"]), n),
            "timestamp": wide["timestamp"].to_numpy() if "timestamp" in wide else [None] * n,
            "phase_label": wide["phase_label"].astype(str).to_numpy(),
            "elapsed_seconds_in_phase": wide["elapsed_seconds_in_phase"].to_numpy(),
            "phase_start_time": wide["phase_start_time"].to_numpy() if "phase_start_time" in wide else [None] * n,
            "phase_end_time": wide["phase_end_time"].to_numpy() if "phase_end_time" in wide else [None] * n,
            "temperature_c": wide[f"temp_{k}"].astype(float).to_numpy(),
            "do_concentration": wide[f"do_{k}"].astype(float).to_numpy(),
        }
    )
    # rows are grouped by phase, in the order of the phase numbers
    order = long["phase_label"].map(utils._phase_index)
    long = long.iloc[numpy.argsort(order.to_numpy(), kind="stable")].reset_index(drop=True)
    long["initial_do"] = long.groupby("phase_label", sort=False)["do_concentration"].transform(lambda s: s.iloc[0])
    return long


def _reference_rows(test: Optional[pandas.DataFrame], chamber: str, name: str) -> pandas.DataFrame:
    if test is None:
        raise MissingReferenceData(f"The {name}-test data is required for this correction method.")
    rows = test[test["chamber_id"] == chamber]
    if rows.empty:
        raise MissingReferenceData(f"The {name}-test data contains no rows for chamber {chamber}.")
    return rows


def _reference_coefficient(
    test: Optional[pandas.DataFrame], chamber: str, name: str
) -> float:
    """Fits `delta_do ~ elapsed_seconds_in_phase` without intercept for one chamber of a background test."""
    rows = _reference_rows(test, chamber, name).dropna(subset=["elapsed_seconds_in_phase", "delta_do"])
    try:
        coef = utils._fit_through_origin(rows["elapsed_seconds_in_phase"], rows["delta_do"])
    except ValueError as ex:
        raise InsufficientData(str(ex), chamber=chamber, phase=f"{name}-test") from ex
    _log.debug("Background coefficient of the %s-test in %s: %g", name, chamber, coef)
    return coef


def _average_coefficient(pre_test: pandas.DataFrame, post_test: pandas.DataFrame, chamber: str) -> float:
    """Fits the regression through the origin on the second-wise average of pre- and post-test `delta_do`.

    Seconds missing from either test, or with a missing `delta_do` in either test, are left out.
    """
    columns = ["elapsed_seconds_in_phase", "delta_do"]
    pre_rows = _reference_rows(pre_test, chamber, "pre")[columns]
    post_rows = _reference_rows(post_test, chamber, "post")[columns]
    if len(pre_rows) != len(post_rows):
        _log.warning(
            "Pre- and post-test of %s have different lengths (%i, %i). Averaging the seconds present in both.",
            chamber,
            len(pre_rows),
            len(post_rows),
        )
    merged = pre_rows.merge(post_rows, on="elapsed_seconds_in_phase", suffixes=("_pre", "_post"))
    merged["delta_do"] = (merged["delta_do_pre"] + merged["delta_do_post"]) / 2
    merged = merged.dropna(subset=columns)
    try:
        return utils._fit_through_origin(merged["elapsed_seconds_in_phase"], merged["delta_do"])
    except ValueError as ex:
        raise InsufficientData(str(ex), chamber=chamber, phase="average") from ex


def _interpolated_rates(
    long: pandas.DataFrame,
    chamber: str,
    interpolate: Callable[[float, float, int, int], float],
    coef_pre: float,
    coef_post: float,
    n_phases: int,
) -> Tuple[numpy.ndarray, Dict[int, Optional[float]]]:
    """Computes per-phase background rates from coefficients interpolated between pre- and post-test."""
    rates = numpy.empty(len(long))
    coefficients: Dict[int, Optional[float]] = {}
    for phase, rows in long.groupby("phase_label", sort=False):
        i = utils._phase_index(phase)
        try:
            coef = interpolate(coef_pre, coef_post, i, n_phases)
        except InsufficientData as ex:
            raise InsufficientData(str(ex), chamber=chamber, phase=phase) from ex
        coefficients[i] = coef
        rates[rows.index.to_numpy()] = coef * rows["elapsed_seconds_in_phase"].to_numpy(dtype=float)
    return rates, coefficients


def _background_rates(
    long: pandas.DataFrame,
    chamber: str,
    method: CorrectionMethod,
    pre_test: Optional[pandas.DataFrame],
    post_test: Optional[pandas.DataFrame],
    n_phases: int,
) -> Tuple[numpy.ndarray, Dict[int, Optional[float]]]:
    """Estimates the background rate of every sample of one chamber with a regression-based method."""
    time = long["elapsed_seconds_in_phase"].to_numpy(dtype=float)
    phase_indices = [utils._phase_index(p) for p in pandas.unique(long["phase_label"])]

    if method in {CorrectionMethod.PRE_TEST, CorrectionMethod.POST_TEST, CorrectionMethod.AVERAGE}:
        if method == CorrectionMethod.PRE_TEST:
            coef = _reference_coefficient(pre_test, chamber, "pre")
        elif method == CorrectionMethod.POST_TEST:
            coef = _reference_coefficient(post_test, chamber, "post")
        else:
            coef = _average_coefficient(pre_test, post_test, chamber)
        return coef * time, {i: coef for i in phase_indices}

    coef_pre = _reference_coefficient(pre_test, chamber, "pre")
    coef_post = _reference_coefficient(post_test, chamber, "post")
    if method == CorrectionMethod.LINEAR:
        interpolate = interpolate_linear
    else:
        interpolate = interpolate_exponential
    return _interpolated_rates(long, chamber, interpolate, coef_pre, coef_post, n_phases)


def _check_inputs(
    info: pandas.DataFrame,
    wide: pandas.DataFrame,
    method: CorrectionMethod,
    pre_test: Optional[pandas.DataFrame],
    post_test: Optional[pandas.DataFrame],
    empty_chamber: Optional[str],
) -> int:
    """Validates the configuration eagerly and returns the number of chambers."""
    utils._check_columns(wide, ["phase_label", "elapsed_seconds_in_phase"], "measurement table")
    utils._check_columns(info, INFO_COLUMNS, "chamber info table")
    n_chambers = utils._count_chambers(wide)
    if len(info) < n_chambers:
        raise ConfigurationError(
            f"The chamber info table describes {len(info)} chambers, but the measurements have {n_chambers}."
        )

    tests = {"pre": pre_test, "post": post_test}
    for name in _REQUIRED_TESTS[method]:
        test = tests[name]
        if test is None:
            raise MissingReferenceData(f'The "{method.value}" method requires the {name}-test data.')
        utils._check_columns(test, ["chamber_id", "elapsed_seconds_in_phase", "delta_do"], f"{name}-test table")

    if method == CorrectionMethod.PARALLEL:
        chambers = [f"CH{k}" for k in range(1, n_chambers + 1)]
        if empty_chamber not in chambers:
            raise InvalidChamber(
                f'The "parallel" method needs the ID of an empty chamber out of {chambers}, got {empty_chamber!r}.'
            )
    return n_chambers


def correct_meas(
    info: pandas.DataFrame,
    measurements: pandas.DataFrame,
    method: Union[str, CorrectionMethod],
    *,
    pre_test: Optional[pandas.DataFrame] = None,
    post_test: Optional[pandas.DataFrame] = None,
    empty_chamber: Optional[str] = None,
) -> CorrectedMeasurements:
    """Corrects metabolic rate measurements for background respiration.

    The background rate is estimated for every sample and subtracted from the raw DO.

    Parameters
    ----------
    info : pandas.DataFrame
        Chamber info table (see `input_info`), row `k-1` describes chamber `CHk`.
    measurements : pandas.DataFrame
        Wide measurement table with `phase_label`, `elapsed_seconds_in_phase`
        and `temp_k`/`do_k` columns for chambers 1..N.
    method : str or CorrectionMethod
        Correction policy.
        Options:
        - "pre.test": regression of the pre-test
        - "post.test": regression of the post-test
        - "average": regression of the averaged pre- and post-test
        - "linear": linear interpolation between pre- and post-test coefficients over the periods
        - "exponential": exponential interpolation between pre- and post-test coefficients
        - "parallel": DO depletion of an empty chamber measured in parallel
    pre_test : pandas.DataFrame, optional
        Background test before the measurements (see `prepare_test`).
    post_test : pandas.DataFrame, optional
        Background test after the measurements.
    empty_chamber : str, optional
        ID of the empty chamber, required for the "parallel" method.

    Returns
    -------
    corrected : CorrectedMeasurements
        Long table of corrected measurements and diagnostics.

    Raises
    ------
    InvalidMethod
        When the method is unknown.
    UnsupportedChamberCount
        When the measurements do not have 1 to 8 chambers.
    MissingReferenceData
        When a background test required by the method is missing.
    InvalidChamber
        When `empty_chamber` does not name a measured chamber.
    InsufficientData
        When a background regression can not be fitted.
    """
    method = CorrectionMethod.parse(method)
    n_chambers = _check_inputs(info, measurements, method, pre_test, post_test, empty_chamber)
    phases = utils._ordered_phases(measurements["phase_label"].astype(str))
    if "total_phases" in measurements and len(measurements) > 0:
        n_phases = int(measurements["total_phases"].iloc[0])
    else:
        n_phases = len(phases)
    _log.info(
        'Correcting %i chambers with %i phases using the "%s" method.', n_chambers, n_phases, method.value
    )

    chambers = {f"CH{k}": _reshape_chamber(measurements, k, info) for k in range(1, n_chambers + 1)}

    coefficients: Dict[str, Dict[int, Optional[float]]] = {}
    messages: List[str] = []
    if method == CorrectionMethod.PARALLEL:
        empty = chambers[empty_chamber]
        shared = (empty["do_concentration"] - empty["initial_do"]).to_numpy()
        for chamber, long in chambers.items():
            long["background_rate"] = shared
            coefficients[chamber] = {utils._phase_index(p): None for p in phases}
    else:
        for chamber, long in chambers.items():
            rates, coefficients[chamber] = _background_rates(
                long, chamber, method, pre_test, post_test, n_phases
            )
            long["background_rate"] = rates
            n_positive = int(numpy.sum(rates > 0))
            if n_positive:
                msg = f"Background rate of {chamber} is unexpectedly positive for {n_positive} samples."
                warnings.warn(msg, PositiveBackgroundRate)
                messages.append(msg)

    data = pandas.concat(list(chambers.values()), ignore_index=True)
    data["do_corrected"] = data["do_concentration"] - data["background_rate"]
    data["do_unit"] = info["do_unit"].iloc[0]
    data = data.loc[:, list(MEASUREMENT_COLUMNS)]
    return CorrectedMeasurements(
        data, method=method, n_phases=n_phases, coefficients=coefficients, warnings=messages
    )
