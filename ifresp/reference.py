"""Preparation of chamber information and background respiration tests."""
import logging
from typing import Optional, Sequence

import numpy
import pandas

from . import utils
from .types import (
    DO_UNITS,
    INITIAL_DO_SAMPLES,
    MAX_CHAMBERS,
    TEST_COLUMNS,
    ConfigurationError,
    InvalidUnit,
    MissingReferenceData,
    UnsupportedChamberCount,
)

_log = logging.getLogger(__file__)


def input_info(
    ids: Sequence[Optional[str]],
    masses: Sequence[Optional[float]],
    volumes: Sequence[Optional[float]],
    do_unit: str = "mg/L",
) -> pandas.DataFrame:
    """Creates the chamber info table.

    Values must be given in chamber order. Empty chambers keep their position
    with `None` entries, so that data is not shifted between chambers.

    Parameters
    ----------
    ids : list of str
        ID of the animal in each chamber.
    masses : list of float
        Wet mass of each animal in grams.
    volumes : list of float
        Volume of each chamber (or of the whole respirometry loop) in milliliters.
    do_unit : str
        Unit of the DO measurements, one of "mg/L", "mmol/L" or "ml/L".

    Returns
    -------
    info : pandas.DataFrame
        Table with the columns "individual_id", "mass_g", "chamber_volume_ml" and "do_unit".

    Raises
    ------
    InvalidUnit
        When the DO unit is not supported.
    UnsupportedChamberCount
        When the number of chambers is not in 1..8.
    ConfigurationError
        When the lists have different lengths.
    """
    if do_unit not in DO_UNITS:
        raise InvalidUnit(f'Unsupported DO unit "{do_unit}". Choose one of {list(DO_UNITS)}.')
    if not len(ids) == len(masses) == len(volumes):
        raise ConfigurationError(
            f"Got {len(ids)} IDs, {len(masses)} masses and {len(volumes)} volumes. Their lengths must match."
        )
    if not 1 <= len(ids) <= MAX_CHAMBERS:
        raise UnsupportedChamberCount(f"Info for {len(ids)} chambers given, but 1 to {MAX_CHAMBERS} are supported.")
    info = pandas.DataFrame(
        {
            "individual_id": list(ids),
            "mass_g": pandas.to_numeric(pandas.Series(list(masses), dtype=object)).astype(float),
            "chamber_volume_ml": pandas.to_numeric(pandas.Series(list(volumes), dtype=object)).astype(float),
        }
    )
    info["do_unit"] = DO_UNITS[do_unit]
    return info


def prepare_test(wide_test: pandas.DataFrame, test: str = "pre", *, phase: str = "M1") -> pandas.DataFrame:
    """Converts a wide background respiration test into the long reference test table.

    Only the first measurement period is used. The initial DO of a chamber is the
    mean of its first 30 samples and `delta_do` is the DO relative to it.

    Parameters
    ----------
    wide_test : pandas.DataFrame
        Background test with `temp_k`/`do_k` columns for chambers 1..N
        and optionally a `phase_label` column.
    test : str
        Name of the test, e.g. "pre" or "post".
    phase : str
        Label of the measurement period to keep.

    Returns
    -------
    reference : pandas.DataFrame
        Long table with one row per chamber and second of the test.

    Raises
    ------
    MissingReferenceData
        When the test contains no samples of the requested period.
    """
    n_chambers = utils._count_chambers(wide_test)
    if "phase_label" in wide_test:
        wide_test = wide_test[wide_test["phase_label"].astype(str) == phase]
    if wide_test.empty:
        raise MissingReferenceData(f'The {test}-test contains no samples of period "{phase}".')

    n = len(wide_test)
    chambers = []
    for k in range(1, n_chambers + 1):
        do = wide_test[f"do_{k}"].to_numpy(dtype=float)
        initial_do = float(numpy.nanmean(do[:INITIAL_DO_SAMPLES]))
        chambers.append(
            pandas.DataFrame(
                {
                    "chamber_id": [f"CH{k}"] * n,
                    "test": [test] * n,
                    "elapsed_seconds_in_phase": numpy.arange(1, n + 1),
                    "initial_do": numpy.repeat(initial_do, n),
                    "temperature_c": wide_test[f"temp_{k}"].to_numpy(dtype=float),
                    "do_concentration": do,
                }
            )
        )
    reference = pandas.concat(chambers, ignore_index=True)
    reference["delta_do"] = reference["do_concentration"] - reference["initial_do"]
    _log.info("Prepared %s-test of %i chambers with %i samples each.", test, n_chambers, n)
    return reference.loc[:, list(TEST_COLUMNS)]
