"""Specifies the base types for representing intermittent-flow respirometry data."""
import enum
import typing
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy
import pandas

MAX_CHAMBERS = 8
"""Largest number of chambers a respirometry system may have."""

INITIAL_DO_SAMPLES = 30
"""Number of leading samples averaged into the initial DO of a background test."""

DO_UNITS = {
    "mg/L": "mg O2",
    "mmol/L": "mmol O2",
    "ml/L": "ml O2",
}
"""Accepted DO concentration units and the amount tag carried through the tables."""

INFO_COLUMNS = ("individual_id", "mass_g", "chamber_volume_ml", "do_unit")

MEASUREMENT_COLUMNS = (
    "chamber_id",
    "individual_id",
    "mass_g",
    "chamber_volume_ml",
    "timestamp",
    "phase_label",
    "elapsed_seconds_in_phase",
    "phase_start_time",
    "phase_end_time",
    "temperature_c",
    "do_concentration",
    "initial_do",
    "background_rate",
    "do_corrected",
    "do_unit",
)

TEST_COLUMNS = (
    "chamber_id",
    "test",
    "elapsed_seconds_in_phase",
    "initial_do",
    "temperature_c",
    "do_concentration",
    "delta_do",
)

SLOPE_COLUMNS = (
    "chamber_id",
    "individual_id",
    "mass_g",
    "chamber_volume_ml",
    "phase_end_timestamp",
    "phase_label",
    "mean_temperature",
    "slope_with_background",
    "slope_corrected",
    "standard_error",
    "r_squared",
    "do_unit",
)


class _DottedEnum(str, enum.Enum):
    """String enumeration that also accepts underscore spellings of its dotted values."""

    @classmethod
    def parse(cls, value: Union[str, "_DottedEnum"]):
        """Looks up a member by value, tolerating `_` in place of `.`.

        Parameters
        ----------
        value : str or member
            Member, dotted value (e.g. "pre.test") or underscore name (e.g. "pre_test").

        Returns
        -------
        member : _DottedEnum
            The matching enumeration member.

        Raises
        ------
        InvalidMethod
            When no member matches.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().replace("_", ".")
            for member in cls:
                if member.value.lower() == normalized.lower():
                    return member
        options = ", ".join(m.value for m in cls)
        raise InvalidMethod(f'Unknown {cls.__name__} "{value}". Choose one of: {options}')


class CorrectionMethod(_DottedEnum):
    """Enumeration of background respiration correction policies."""

    PRE_TEST = "pre.test"
    POST_TEST = "post.test"
    AVERAGE = "average"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    PARALLEL = "parallel"


class ExtractionMethod(_DottedEnum):
    """Enumeration of per-chamber slope selection policies."""

    ALL = "all"
    MIN = "min"
    MAX = "max"
    LOWER_TAIL = "lower.tail"
    UPPER_TAIL = "upper.tail"
    MLND = "calcSMR.mlnd"
    QUANT = "calcSMR.quant"
    LOW10 = "calcSMR.low10"
    LOW10PC = "calcSMR.low10pc"


class CorrectedMeasurements:
    """Measurement data corrected for background respiration."""

    def __init__(
        self,
        data: pandas.DataFrame,
        *,
        method: CorrectionMethod,
        n_phases: int,
        coefficients: Dict[str, Dict[int, Optional[float]]],
        warnings: Sequence[str] = (),
    ):
        self._data = data
        self._method = method
        self._n_phases = n_phases
        self._coefficients = coefficients
        self._warnings = tuple(warnings)

    @property
    def data(self) -> pandas.DataFrame:
        """Long table with one row per chamber and second."""
        return self._data

    @property
    def method(self) -> CorrectionMethod:
        """Correction policy that produced the background rates."""
        return self._method

    @property
    def chambers(self) -> typing.Tuple[str, ...]:
        """Chamber IDs in output order."""
        return tuple(pandas.unique(self._data["chamber_id"]))

    @property
    def n_phases(self) -> int:
        """Total number of measurement phases of the experiment."""
        return self._n_phases

    @property
    def coefficients(self) -> Dict[str, Dict[int, Optional[float]]]:
        """Background coefficient (DO per second) by chamber and phase index.

        Entries are `None` for the "parallel" method which does not fit any regression.
        """
        return self._coefficients

    @property
    def warnings(self) -> Tuple[str, ...]:
        """Data-quality warnings raised during the correction."""
        return self._warnings

    def __len__(self):
        return len(self._data)

    def __repr__(self):
        return (
            f"CorrectedMeasurements(method={self.method.value}, "
            f"{len(self.chambers)} chambers, {self.n_phases} phases, {len(self)} rows)"
        )


class MixtureSummary:
    """Statistics of the Gaussian mixture fitted to the slopes of one chamber."""

    def __init__(
        self,
        *,
        means: numpy.ndarray,
        variances: numpy.ndarray,
        weights: numpy.ndarray,
        supports: numpy.ndarray,
        min_support: float,
        selected: int,
    ):
        self.means = numpy.asarray(means)
        self.variances = numpy.asarray(variances)
        self.weights = numpy.asarray(weights)
        self.supports = numpy.asarray(supports)
        self.min_support = min_support
        self.selected = selected

    @property
    def n_components(self) -> int:
        """Number of mixture components chosen by BIC."""
        return len(self.means)

    @property
    def valid(self) -> numpy.ndarray:
        """Mask of components with enough assigned slopes to be selectable."""
        return self.supports >= self.min_support

    @property
    def selected_mean(self) -> float:
        """Mean of the selected component."""
        return float(self.means[self.selected - 1])

    def __repr__(self):
        return f"MixtureSummary({self.n_components} components, selected={self.selected})"


class SlopeResult:
    """Slopes extracted from corrected measurements."""

    def __init__(
        self,
        slopes: pandas.DataFrame,
        fits: pandas.DataFrame,
        *,
        method: ExtractionMethod,
        mixtures: Optional[Dict[str, MixtureSummary]] = None,
        warnings: Sequence[str] = (),
    ):
        self._slopes = slopes
        self._fits = fits
        self._method = method
        self._mixtures = mixtures or {}
        self._warnings = tuple(warnings)

    @property
    def slopes(self) -> pandas.DataFrame:
        """Selected slopes of all chambers."""
        return self._slopes

    @property
    def fits(self) -> pandas.DataFrame:
        """All per-phase regressions before R² filtering."""
        return self._fits

    @property
    def method(self) -> ExtractionMethod:
        """Selection policy that produced the slopes."""
        return self._method

    @property
    def mixtures(self) -> Dict[str, MixtureSummary]:
        """Mixture statistics by chamber (only for the "calcSMR.mlnd" method)."""
        return self._mixtures

    @property
    def warnings(self) -> Tuple[str, ...]:
        """Data-quality warnings raised during the extraction."""
        return self._warnings

    def __len__(self):
        return len(self._slopes)

    def __repr__(self):
        return f"SlopeResult(method={self.method.value}, {len(self)} slopes, {len(self.fits)} fits)"


class ConfigurationError(ValueError):
    pass


class UnsupportedChamberCount(ConfigurationError):
    pass


class InvalidMethod(ConfigurationError):
    pass


class InvalidChamber(ConfigurationError):
    pass


class InvalidUnit(ConfigurationError):
    pass


class InvalidPhaseLabel(ConfigurationError):
    pass


class MissingReferenceData(ConfigurationError):
    pass


class InsufficientData(Exception):
    """Raised when a regression or selection has too few data points.

    The offending chamber and phase are available as attributes.
    """

    def __init__(self, message: str, *, chamber: Optional[str] = None, phase: Optional[str] = None):
        self.chamber = chamber
        self.phase = phase
        where = ", ".join(
            f"{key}={value}" for key, value in [("chamber", chamber), ("phase", phase)] if value is not None
        )
        super().__init__(f"{message} ({where})" if where else message)


class PositiveBackgroundRate(UserWarning):
    pass


class NoSlopesRetained(UserWarning):
    pass


class IncompleteSelection(UserWarning):
    pass
