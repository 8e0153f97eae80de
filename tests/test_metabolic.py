"""Contains unit tests for the metabolic rate calculation"""
import numpy
import pandas
import pytest

import ifresp
from conftest import make_slopes


class TestCalculateMR:
    def test_known_rates(self):
        mr = ifresp.calculate_mr(make_slopes([-0.001]))
        record = mr.iloc[0]
        # 250 mL chamber minus 2 mL of fish
        assert record.mr_abs == pytest.approx(0.001 * 0.248 * 3600)
        assert record.mr_abs_with_background == pytest.approx(0.0011 * 0.248 * 3600)
        assert record.mr_mass == pytest.approx(0.001 * 0.248 / 0.002 * 3600)
        assert record.background_percent == pytest.approx(100 / 11)
        return

    def test_columns_are_appended(self):
        slopes = make_slopes([-0.001, -0.002])
        mr = ifresp.calculate_mr(slopes)
        assert list(mr.columns) == list(slopes.columns) + [
            "background_percent",
            "mr_abs_with_background",
            "mr_abs",
            "mr_mass",
        ]
        assert "mr_abs" not in slopes.columns
        return

    def test_density(self):
        slopes = make_slopes([-0.001])
        dense = ifresp.calculate_mr(slopes, density=2000).iloc[0]
        assert dense.mr_abs == pytest.approx(0.001 * 0.249 * 3600)
        with pytest.raises(ValueError):
            ifresp.calculate_mr(slopes, density=0)
        return

    def test_scaling(self):
        """Absolute rates scale with the slope, mass-specific rates inversely with the mass."""
        slopes = make_slopes([-0.001, -0.002])
        slopes["mass_g"] = [2.0, 4.0]
        slopes["chamber_volume_ml"] = [250.0, 252.0]
        mr = ifresp.calculate_mr(slopes)
        # identical water volumes of 248 mL
        assert mr.mr_abs.iloc[1] == pytest.approx(2 * mr.mr_abs.iloc[0])
        assert mr.mr_mass.iloc[1] == pytest.approx(mr.mr_mass.iloc[0])
        return

    def test_from_slope_result(self, info4, wide4, pre_zero):
        corrected = ifresp.correct_meas(info4, wide4, "pre.test", pre_test=pre_zero)
        result = ifresp.extract_slope(corrected, "all", r2_min=0.9)
        mr = ifresp.calculate_mr(result)
        assert len(mr) == len(result.slopes)
        assert numpy.all(mr.mr_abs > 0)
        numpy.testing.assert_allclose(mr.background_percent, 0, atol=1e-6)
        ch1 = mr[mr.chamber_id == "CH1"]
        numpy.testing.assert_allclose(ch1.mr_mass, 0.001 * (0.25 - 0.00186) / 0.00186 * 3600)
        return

    def test_missing_columns(self):
        with pytest.raises(KeyError):
            ifresp.calculate_mr(pandas.DataFrame({"slope_corrected": [-0.001]}))
        return
