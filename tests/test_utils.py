import numpy
import pandas
import pytest

from ifresp import utils
from ifresp.types import InvalidPhaseLabel, UnsupportedChamberCount


class TestPhases:
    def test_phase_index(self):
        assert utils._phase_index("M1") == 1
        assert utils._phase_index("M12") == 12
        assert utils._phase_index("F3") == 3
        with pytest.raises(InvalidPhaseLabel):
            utils._phase_index("M")
        return

    def test_ordered_phases(self):
        labels = ["M10", "M2", "M2", "M1", "M11", "M10"]
        assert utils._ordered_phases(labels) == ["M1", "M2", "M10", "M11"]
        return


class TestChamberCount:
    def test_count(self):
        wide = pandas.DataFrame(columns=["phase_label", "temp_1", "do_1", "temp_2", "do_2", "total_phases"])
        assert utils._count_chambers(wide) == 2
        return

    def test_unsupported(self):
        with pytest.raises(UnsupportedChamberCount):
            utils._count_chambers(pandas.DataFrame(columns=["phase_label"]))
        with pytest.raises(UnsupportedChamberCount):
            utils._count_chambers(pandas.DataFrame(columns=["temp_1", "do_1", "temp_3", "do_3"]))
        columns = [c for k in range(1, 10) for c in (f"temp_{k}", f"do_{k}")]
        with pytest.raises(UnsupportedChamberCount):
            utils._count_chambers(pandas.DataFrame(columns=columns))
        return


class TestRegressions:
    def test_through_origin(self):
        x = numpy.arange(1, 11)
        assert utils._fit_through_origin(x, -0.002 * x) == pytest.approx(-0.002)
        with pytest.raises(ValueError):
            utils._fit_through_origin([], [])
        with pytest.raises(ValueError):
            utils._fit_through_origin([0, 0], [1, 2])
        return

    def test_linear(self):
        x = numpy.arange(1, 11)
        slope, stderr, r_squared = utils._fit_linear(x, 5 - 0.5 * x)
        assert slope == pytest.approx(-0.5)
        assert stderr == pytest.approx(0, abs=1e-10)
        assert r_squared == pytest.approx(1)
        with pytest.raises(ValueError):
            utils._fit_linear([3, 3, 3], [1, 2, 3])
        return

    def test_missing_columns(self):
        with pytest.raises(KeyError, match="do_corrected"):
            utils._check_columns(pandas.DataFrame(columns=["a"]), ["a", "do_corrected"], "table")
        return
