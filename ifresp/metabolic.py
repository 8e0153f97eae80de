"""Conversion of oxygen consumption slopes into metabolic rates."""
from typing import Union

import pandas

from . import utils
from .types import SlopeResult

SECONDS_PER_HOUR = 3600


def calculate_mr(slopes: Union[SlopeResult, pandas.DataFrame], density: float = 1000) -> pandas.DataFrame:
    """Calculates background respiration, absolute and mass-specific metabolic rates.

    The water volume of a chamber is its volume minus the volume of the animal,
    which is estimated from its mass and body density.

    Parameters
    ----------
    slopes : SlopeResult or pandas.DataFrame
        Slopes (DO per second) as obtained from `extract_slope`.
    density : float
        Density of the animal body in kg/m³.

    Returns
    -------
    mr : pandas.DataFrame
        The slope table with additional columns:
        - "background_percent": share of the background in the raw slope (%)
        - "mr_abs_with_background": absolute rate before the correction (DO unit amount per hour)
        - "mr_abs": absolute metabolic rate (DO unit amount per hour)
        - "mr_mass": mass-specific metabolic rate (DO unit amount per kg and hour)
    """
    data = slopes.slopes if isinstance(slopes, SlopeResult) else slopes
    utils._check_columns(
        data, ["mass_g", "chamber_volume_ml", "slope_with_background", "slope_corrected"], "slope table"
    )
    if density <= 0:
        raise ValueError(f"The body density must be positive, got {density}.")
    mr = data.copy()
    mass = mr["mass_g"].astype(float)
    # liters of water in the chamber
    volume = mr["chamber_volume_ml"].astype(float) / 1000 - mass / density
    body_mass = mass / 1000
    with_bg = mr["slope_with_background"].astype(float)
    corrected = mr["slope_corrected"].astype(float)

    mr["background_percent"] = (with_bg - corrected) / with_bg * 100
    mr["mr_abs_with_background"] = -(with_bg * volume) * SECONDS_PER_HOUR
    mr["mr_abs"] = -(corrected * volume) * SECONDS_PER_HOUR
    mr["mr_mass"] = -(corrected * volume / body_mass) * SECONDS_PER_HOUR
    return mr
