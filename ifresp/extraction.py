"""
Extraction of oxygen consumption slopes from corrected measurements.

Every measurement period of every chamber is summarized by linear regressions
of the raw and the corrected DO over time. Periods with a poor fit are dropped
and the remaining slopes are reduced chamber-wise by one of several selection
methods, among them the standard metabolic rate estimators of Chabot et al. (2016).
"""
import logging
import warnings
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import fastprogress
import joblib
import numpy
import pandas
import sklearn.mixture
import sklearn.preprocessing

from . import utils
from .types import (
    SLOPE_COLUMNS,
    ConfigurationError,
    CorrectedMeasurements,
    ExtractionMethod,
    IncompleteSelection,
    InsufficientData,
    MixtureSummary,
    NoSlopesRetained,
    SlopeResult,
)

_log = logging.getLogger(__file__)

_REQUIRED_COLUMNS = (
    "chamber_id",
    "phase_label",
    "elapsed_seconds_in_phase",
    "temperature_c",
    "do_concentration",
    "do_corrected",
)

_MLND_PHASE = "M"
"""Phase label of the record summarizing the mean of the lowest normal distribution."""


def _fit_phase(chamber: str, phase: str, rows: pandas.DataFrame) -> Dict[str, Any]:
    """Fits the raw and the corrected DO of one period over time."""
    time = rows["elapsed_seconds_in_phase"].to_numpy(dtype=float)
    try:
        slope_with_background, _, _ = utils._fit_linear(time, rows["do_concentration"])
        slope, stderr, r_squared = utils._fit_linear(time, rows["do_corrected"])
    except ValueError as ex:
        raise InsufficientData(str(ex), chamber=chamber, phase=phase) from ex
    first = rows.iloc[0]
    return {
        "chamber_id": chamber,
        "individual_id": first.get("individual_id"),
        "mass_g": first.get("mass_g"),
        "chamber_volume_ml": first.get("chamber_volume_ml"),
        "phase_end_timestamp": rows.iloc[-1].get("timestamp"),
        "phase_label": phase,
        "mean_temperature": float(numpy.nanmean(rows["temperature_c"].to_numpy(dtype=float))),
        "slope_with_background": slope_with_background,
        "slope_corrected": slope,
        "standard_error": stderr,
        "r_squared": r_squared,
        "do_unit": first.get("do_unit"),
    }


def _fit_chamber(
    chamber: str, data: pandas.DataFrame, phases: Sequence[str], length_cutoff: Optional[float]
) -> List[Dict[str, Any]]:
    """Fits all periods of one chamber."""
    records = []
    for phase in phases:
        rows = data[data["phase_label"] == phase]
        if length_cutoff is not None:
            rows = rows[rows["elapsed_seconds_in_phase"] <= length_cutoff]
        rows = rows.dropna(subset=["elapsed_seconds_in_phase", "do_concentration", "do_corrected"])
        if rows.empty:
            raise InsufficientData("No samples to fit", chamber=chamber, phase=phase)
        records.append(_fit_phase(chamber, phase, rows))
    _log.debug("Fitted %i periods of %s.", len(records), chamber)
    return records


def fit_phases(
    corrected: Union[CorrectedMeasurements, pandas.DataFrame],
    *,
    length_cutoff: Optional[float] = None,
    treat_missing_as_zero: bool = False,
    n_jobs: Optional[int] = None,
    progress: bool = False,
) -> pandas.DataFrame:
    """Fits linear regressions of DO over time for every chamber and period.

    Parameters
    ----------
    corrected : CorrectedMeasurements or pandas.DataFrame
        Corrected measurements (see `correct_meas`).
    length_cutoff : float, optional
        Only samples with `elapsed_seconds_in_phase <= length_cutoff` are used (defaults to all).
    treat_missing_as_zero : bool
        If `True`, missing values are replaced by 0 before fitting.
        If `False`, samples with missing DO are left out.
    n_jobs : int, optional
        Number of joblib workers to fit chambers in parallel.
    progress : bool
        If `True`, a progress bar is shown while iterating over the chambers.

    Returns
    -------
    fits : pandas.DataFrame
        One row per chamber and period, ordered by chamber and period number.

    Raises
    ------
    InsufficientData
        When a period has fewer than two distinct time points.
    """
    data = corrected.data if isinstance(corrected, CorrectedMeasurements) else corrected
    utils._check_columns(data, _REQUIRED_COLUMNS, "corrected measurement table")
    if treat_missing_as_zero:
        numeric = data.select_dtypes(include="number").columns
        data = data.copy()
        data[numeric] = data[numeric].fillna(0)

    phases = utils._ordered_phases(data["phase_label"].astype(str))
    data = data.assign(phase_label=data["phase_label"].astype(str))
    args = [(str(chamber), frame) for chamber, frame in data.groupby("chamber_id", sort=False)]
    _log.info("Fitting %i periods in each of %i chambers.", len(phases), len(args))

    if n_jobs is not None and n_jobs != 1 and len(args) > 1:
        results = joblib.Parallel(n_jobs=n_jobs)(
            joblib.delayed(_fit_chamber)(chamber, frame, phases, length_cutoff) for chamber, frame in args
        )
    else:
        iterator = fastprogress.progress_bar(args) if progress else args
        results = [_fit_chamber(chamber, frame, phases, length_cutoff) for chamber, frame in iterator]

    records = [record for chamber_records in results for record in chamber_records]
    return pandas.DataFrame(records, columns=list(SLOPE_COLUMNS))


def _summary_record(
    slopes: pandas.DataFrame,
    *,
    phase_label: Optional[str],
    slope_corrected: float,
    slope_with_background: float,
    mean_temperature: float,
    standard_error: float,
    r_squared: float,
) -> pandas.DataFrame:
    """Creates a one-row slope table that summarizes several periods of a chamber."""
    out = slopes.iloc[[0]].copy()
    out["phase_end_timestamp"] = None
    out["phase_label"] = phase_label
    out["mean_temperature"] = mean_temperature
    out["slope_with_background"] = slope_with_background
    out["slope_corrected"] = slope_corrected
    out["standard_error"] = standard_error
    out["r_squared"] = r_squared
    return out


def select_all(slopes: pandas.DataFrame) -> pandas.DataFrame:
    """All slopes in ascending order."""
    return slopes.sort_values("slope_corrected", kind="mergesort")


def select_min(slopes: pandas.DataFrame, n_slope: int) -> pandas.DataFrame:
    """The `n_slope` highest slopes, i.e. the lowest absolute oxygen consumption rates."""
    return slopes.sort_values("slope_corrected", ascending=False, kind="mergesort").head(n_slope)


def select_max(slopes: pandas.DataFrame, n_slope: int) -> pandas.DataFrame:
    """The `n_slope` lowest slopes, i.e. the highest absolute oxygen consumption rates."""
    return slopes.sort_values("slope_corrected", ascending=True, kind="mergesort").head(n_slope)


def select_lower_tail(slopes: pandas.DataFrame, percent: float) -> pandas.DataFrame:
    """Slopes whose absolute value is within the lower `percent` of the absolute slope distribution."""
    magnitude = slopes["slope_corrected"].abs()
    threshold = numpy.quantile(magnitude.to_numpy(), percent / 100)
    return slopes[magnitude <= threshold]


def select_upper_tail(slopes: pandas.DataFrame, percent: float) -> pandas.DataFrame:
    """Slopes within the lower `percent` of the signed slope distribution.

    For negative slopes these are the highest oxygen consumption rates.
    Unlike `select_lower_tail`, the percentile is taken of the signed values.
    """
    threshold = numpy.quantile(slopes["slope_corrected"].to_numpy(), percent / 100)
    return slopes[slopes["slope_corrected"] <= threshold]


def select_quantile(slopes: pandas.DataFrame, quantile_p: float) -> pandas.DataFrame:
    """The period closest to the `quantile_p` quantile of the absolute slopes.

    The slope of the returned record is set to the negated quantile itself,
    the other columns are those of the closest period.
    """
    values = slopes["slope_corrected"].to_numpy()
    target = -abs(float(numpy.quantile(numpy.abs(values), quantile_p)))
    closest = int(numpy.argmin(numpy.abs(values - target)))
    out = slopes.iloc[[closest]].copy()
    out["slope_corrected"] = target
    return out


def select_low10(slopes: pandas.DataFrame) -> pandas.DataFrame:
    """Mean of the 10 highest slopes (the 10 lowest absolute oxygen consumption rates)."""
    ranked = numpy.sort(slopes["slope_corrected"].to_numpy())[::-1]
    low10 = ranked[:10]
    members = slopes[slopes["slope_corrected"] >= low10.min()]
    return _summary_record(
        slopes,
        phase_label=None,
        slope_corrected=float(numpy.mean(low10)),
        slope_with_background=float(members["slope_with_background"].mean()),
        mean_temperature=float(members["mean_temperature"].mean()),
        standard_error=numpy.nan,
        r_squared=float(members["r_squared"].mean()),
    )


def select_low10pc(slopes: pandas.DataFrame) -> pandas.DataFrame:
    """Mean of the lowest 10 % absolute slopes after discarding the 5 lowest as outliers.

    Follows Herrmann & Enders (2000): the 5 highest slopes are removed and the
    next `round(0.1 * (n - 5))` slopes (at least one) are averaged.

    Raises
    ------
    InsufficientData
        When fewer than 6 slopes are available.
    """
    n = len(slopes)
    if n < 6:
        raise InsufficientData(f"Need at least 6 slopes after the R² filter, got {n}")
    ranked = slopes.sort_values("slope_corrected", ascending=False, kind="mergesort")
    n_mean = max(1, int(numpy.round(0.1 * (n - 5))))
    chosen = ranked.iloc[5 : 5 + n_mean]
    window = ranked["slope_corrected"].iloc[5:10]
    members = slopes[
        (slopes["slope_corrected"] <= window.max()) & (slopes["slope_corrected"] >= window.min())
    ]
    return _summary_record(
        slopes,
        phase_label=None,
        slope_corrected=float(chosen["slope_corrected"].mean()),
        slope_with_background=float(chosen["slope_with_background"].mean()),
        mean_temperature=float(members["mean_temperature"].mean()),
        standard_error=numpy.nan,
        r_squared=float(members["r_squared"].mean()),
    )


def fit_mixture(
    values: Sequence[float],
    mixture_components: Union[int, Iterable[int]] = 4,
    *,
    random_state: Optional[int] = 0,
) -> Tuple[numpy.ndarray, numpy.ndarray, numpy.ndarray, numpy.ndarray]:
    """Fits univariate Gaussian mixtures and keeps the one with the best BIC.

    For every candidate number of components, a model with one variance shared by
    all components (`covariance_type="tied"`) and one with a variance per component
    (`covariance_type="full"`) are fitted.
    The values are standardized before fitting, because slopes are typically much
    smaller than the covariance regularization of the mixture model.
    Components are numbered by ascending mean, so the last component is the one
    with the highest (least negative) slopes.

    Parameters
    ----------
    values : array-like
        Slopes to cluster.
    mixture_components : int or iterable of int
        Candidate numbers of components. An int `G` means `1..G`.
    random_state : int, optional
        Seed for the initialization of the mixture fits.

    Returns
    -------
    means : numpy.ndarray
        Component means in the units of `values`, ascending.
    variances : numpy.ndarray
        Component variances in the squared units of `values`.
    weights : numpy.ndarray
        Mixing weights of the components.
    components : numpy.ndarray
        1-based component number of every value.

    Raises
    ------
    ConfigurationError
        When none of the candidate numbers of components can be fitted.
    """
    x = numpy.asarray(values, dtype=float).reshape(-1, 1)
    if isinstance(mixture_components, int):
        candidates = list(range(1, mixture_components + 1))
    else:
        candidates = sorted(set(int(g) for g in mixture_components))
    candidates = [g for g in candidates if 1 <= g <= len(x)]
    if not candidates:
        raise ConfigurationError(f"No valid number of mixture components for {len(x)} slopes.")

    scaler = sklearn.preprocessing.StandardScaler()
    z = scaler.fit_transform(x)
    center = float(scaler.mean_[0])
    scale = float(scaler.scale_[0])

    best = None
    best_bic = numpy.inf
    for g in candidates:
        # equal variance ("tied") and varying variance ("full") models coincide for one component
        for covariance_type in (("full",) if g == 1 else ("tied", "full")):
            mixture = sklearn.mixture.GaussianMixture(
                n_components=g, covariance_type=covariance_type, random_state=random_state
            ).fit(z)
            bic = mixture.bic(z)
            _log.debug("Gaussian mixture with %i %s components: BIC=%g", g, covariance_type, bic)
            if bic < best_bic:
                best, best_bic = mixture, bic

    n_components = best.n_components
    order = numpy.argsort(best.means_.ravel(), kind="stable")
    rank = numpy.empty_like(order)
    rank[order] = numpy.arange(n_components)
    means = best.means_.ravel()[order] * scale + center
    if best.covariance_type == "tied":
        variances = numpy.repeat(float(best.covariances_.ravel()[0]), n_components) * scale**2
    else:
        variances = best.covariances_.reshape(n_components, -1)[order, 0] * scale**2
    weights = best.weights_[order]
    components = rank[best.predict(z)] + 1
    return means, variances, weights, components


def select_mlnd(
    slopes: pandas.DataFrame,
    mixture_components: Union[int, Iterable[int]] = 4,
    *,
    random_state: Optional[int] = 0,
) -> Tuple[pandas.DataFrame, MixtureSummary]:
    """Mean of the lowest normal distribution (MLND) of the absolute slopes.

    A univariate Gaussian mixture is fitted to the slopes. Among the components
    that hold at least 10 % of the slopes, the one with the highest component
    number is selected. Components are numbered by ascending mean, which assumes
    that the last numbered cluster is the one of lowest metabolic activity.

    Returns
    -------
    record : pandas.DataFrame
        One row with the component mean as slope and the other columns averaged
        over the slopes assigned to the component.
    summary : MixtureSummary
        Statistics of all components, to audit the selection.

    Raises
    ------
    InsufficientData
        When fewer than 2 slopes are available, or no component holds 10 % of the slopes.
    """
    n = len(slopes)
    if n < 2:
        raise InsufficientData(f"Need at least 2 slopes for a mixture model, got {n}")
    means, variances, weights, components = fit_mixture(
        slopes["slope_corrected"].to_numpy(), mixture_components, random_state=random_state
    )
    supports = numpy.bincount(components - 1, minlength=len(means))
    min_support = 0.1 * n
    valid = [c + 1 for c in range(len(means)) if supports[c] >= min_support]
    if not valid:
        raise InsufficientData(
            f"None of the {len(means)} mixture components holds at least 10 % of the {n} slopes."
        )
    selected = int(max(valid))
    summary = MixtureSummary(
        means=means,
        variances=variances,
        weights=weights,
        supports=supports,
        min_support=min_support,
        selected=selected,
    )
    members = slopes[components == selected]
    record = _summary_record(
        slopes,
        phase_label=_MLND_PHASE,
        slope_corrected=summary.selected_mean,
        slope_with_background=float(members["slope_with_background"].mean()),
        mean_temperature=float(members["mean_temperature"].mean()),
        standard_error=float(members["standard_error"].mean()),
        r_squared=float(members["r_squared"].mean()),
    )
    return record, summary


def _check_options(n_slope: int, percent: float, quantile_p: float) -> None:
    if n_slope < 1:
        raise ConfigurationError(f"n_slope must be at least 1, got {n_slope}.")
    if not 0 <= percent <= 100:
        raise ConfigurationError(f"percent must be in [0, 100], got {percent}.")
    if not 0 <= quantile_p <= 1:
        raise ConfigurationError(f"quantile_p must be in [0, 1], got {quantile_p}.")


def extract_slope(
    corrected: Union[CorrectedMeasurements, pandas.DataFrame],
    method: Union[str, ExtractionMethod] = "all",
    *,
    r2_min: float = 0.95,
    length_cutoff: Optional[float] = None,
    n_slope: int = 1000,
    percent: float = 10,
    quantile_p: float = 0.25,
    mixture_components: Union[int, Iterable[int]] = 4,
    treat_missing_as_zero: bool = False,
    random_state: Optional[int] = 0,
    n_jobs: Optional[int] = None,
    progress: bool = False,
) -> SlopeResult:
    """Extracts the slopes of the linear regression of corrected DO over time.

    Parameters
    ----------
    corrected : CorrectedMeasurements or pandas.DataFrame
        Corrected measurements (see `correct_meas`).
    method : str or ExtractionMethod
        Selection method applied to the slopes of each chamber.
        Options:
        - "all": all slopes
        - "min": the `n_slope` lowest absolute slopes
        - "max": the `n_slope` highest absolute slopes
        - "lower.tail": lower tail (`percent`) of the absolute slope distribution
        - "upper.tail": upper tail (`percent`) of the absolute slope distribution
        - "calcSMR.mlnd": mean of the lowest normal distribution (`mixture_components`)
        - "calcSMR.quant": quantile (`quantile_p`) of the absolute slope distribution
        - "calcSMR.low10": mean of the 10 lowest absolute slopes
        - "calcSMR.low10pc": mean of the lowest 10 % absolute slopes after removing 5 outliers
    r2_min : float
        Minimal coefficient of determination of a period to be considered.
    length_cutoff : float, optional
        Number of seconds from the beginning of each period used for the regressions (defaults to all).
    n_slope : int
        Number of slopes per chamber for "min" and "max".
    percent : float
        Percentage of the tail for "lower.tail" and "upper.tail".
    quantile_p : float
        Probability of the quantile for "calcSMR.quant".
    mixture_components : int or iterable of int
        Candidate numbers of mixture components for "calcSMR.mlnd".
    treat_missing_as_zero : bool
        If `True`, missing values are replaced by 0 before fitting.
    random_state : int, optional
        Seed of the mixture model fits.
    n_jobs : int, optional
        Number of joblib workers for the regressions.
    progress : bool
        If `True`, a progress bar is shown during the regressions.

    Returns
    -------
    result : SlopeResult
        Selected slopes, all regressions, warnings and mixture statistics.

    Raises
    ------
    InvalidMethod
        When the method is unknown.
    ConfigurationError
        When a numeric option is out of range.
    InsufficientData
        When a period can not be fitted, or too few slopes remain for a selection.
    """
    method = ExtractionMethod.parse(method)
    _check_options(n_slope, percent, quantile_p)

    fits = fit_phases(
        corrected,
        length_cutoff=length_cutoff,
        treat_missing_as_zero=treat_missing_as_zero,
        n_jobs=n_jobs,
        progress=progress,
    )
    retained = fits[fits["r_squared"] >= r2_min]
    _log.info("%i of %i periods have R² >= %g.", len(retained), len(fits), r2_min)

    messages: List[str] = []
    mixtures: Dict[str, MixtureSummary] = {}
    selections = []
    for chamber in pandas.unique(fits["chamber_id"]):
        slopes = retained[retained["chamber_id"] == chamber].reset_index(drop=True)
        if slopes.empty:
            msg = f"No period of {chamber} reached R² >= {r2_min}. The chamber is left out."
            _log.warning(msg)
            warnings.warn(msg, NoSlopesRetained)
            messages.append(msg)
            continue

        try:
            if method == ExtractionMethod.ALL:
                selection = select_all(slopes)
            elif method == ExtractionMethod.MIN:
                selection = select_min(slopes, n_slope)
            elif method == ExtractionMethod.MAX:
                selection = select_max(slopes, n_slope)
            elif method == ExtractionMethod.LOWER_TAIL:
                selection = select_lower_tail(slopes, percent)
            elif method == ExtractionMethod.UPPER_TAIL:
                selection = select_upper_tail(slopes, percent)
            elif method == ExtractionMethod.MLND:
                selection, mixtures[chamber] = select_mlnd(
                    slopes, mixture_components, random_state=random_state
                )
            elif method == ExtractionMethod.QUANT:
                selection = select_quantile(slopes, quantile_p)
            elif method == ExtractionMethod.LOW10:
                if len(slopes) < 10:
                    msg = f"Only {len(slopes)} slopes of {chamber} are available for the mean of the 10 lowest."
                    warnings.warn(msg, IncompleteSelection)
                    messages.append(msg)
                selection = select_low10(slopes)
            else:
                selection = select_low10pc(slopes)
        except InsufficientData as ex:
            raise InsufficientData(str(ex), chamber=chamber, phase=None) from ex
        selections.append(selection)

    if selections:
        result = pandas.concat(selections, ignore_index=True)
    else:
        result = pandas.DataFrame(columns=list(SLOPE_COLUMNS))
    return SlopeResult(result, fits, method=method, mixtures=mixtures, warnings=messages)
