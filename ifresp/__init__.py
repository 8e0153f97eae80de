# ifresp
# Copyright (C) 2019  Forschungszentrum Jülich GmbH
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.
# For more information contact the maintainers of https://github.com/JuBiotech.
"""Intermittent-flow respirometry (ifresp) is a package for correcting dissolved oxygen
measurements for background respiration and extracting metabolic rate slopes from them.
"""
from . import utils
from .correction import correct_meas, interpolate_exponential, interpolate_linear
from .extraction import extract_slope, fit_mixture, fit_phases
from .metabolic import calculate_mr
from .reference import input_info, prepare_test
from .types import (
    ConfigurationError,
    CorrectedMeasurements,
    CorrectionMethod,
    ExtractionMethod,
    IncompleteSelection,
    InsufficientData,
    InvalidChamber,
    InvalidMethod,
    InvalidPhaseLabel,
    InvalidUnit,
    MissingReferenceData,
    MixtureSummary,
    NoSlopesRetained,
    PositiveBackgroundRate,
    SlopeResult,
    UnsupportedChamberCount,
)

__version__ = "0.1.0"
