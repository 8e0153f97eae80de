import numpy
import pandas
import pytest

import ifresp


def make_wide(slopes, n_seconds=300, initial_do=8.0, noise=None, seed=42):
    """Simulates a wide measurement table with linear DO decay.

    Parameters
    ----------
    slopes : list of lists
        `slopes[k][m]` is the DO slope of chamber k+1 in period M{m+1}.
    n_seconds : int
        Length of each period.
    noise : float, optional
        Standard deviation of gaussian noise added to the DO.
    """
    rng = numpy.random.RandomState(seed)
    n_chambers = len(slopes)
    n_phases = len(slopes[0])
    t = numpy.arange(1, n_seconds + 1)
    frames = []
    start = pandas.Timestamp("2020-05-01 10:00:00")
    for m in range(n_phases):
        phase_start = start + pandas.Timedelta(seconds=m * n_seconds)
        frame = pandas.DataFrame(
            {
                "timestamp": phase_start + pandas.to_timedelta(t - 1, unit="s"),
                "phase_label": f"M{m + 1}",
                "elapsed_seconds_in_phase": t,
                "phase_start_time": phase_start,
                "phase_end_time": phase_start + pandas.Timedelta(seconds=n_seconds - 1),
                "total_phases": n_phases,
            }
        )
        for k in range(n_chambers):
            do = initial_do + slopes[k][m] * t
            if noise:
                do = do + rng.normal(0, noise, size=len(t))
            frame[f"temp_{k + 1}"] = 15.0 + 0.1 * k
            frame[f"do_{k + 1}"] = do
        frames.append(frame)
    return pandas.concat(frames, ignore_index=True)


def make_test(background_slopes, n_seconds=120):
    """Simulates a wide background test with the given per-chamber DO slopes."""
    t = numpy.arange(1, n_seconds + 1)
    frame = pandas.DataFrame({"phase_label": "M1"}, index=range(n_seconds))
    for k, slope in enumerate(background_slopes):
        frame[f"temp_{k + 1}"] = 15.0
        frame[f"do_{k + 1}"] = 8.0 + slope * t
    return frame


def make_slopes(values, chamber="CH1"):
    """Creates a slope table of one chamber with the given corrected slopes."""
    n = len(values)
    return pandas.DataFrame(
        {
            "chamber_id": [chamber] * n,
            "individual_id": ["fish"] * n,
            "mass_g": [2.0] * n,
            "chamber_volume_ml": [250.0] * n,
            "phase_end_timestamp": [None] * n,
            "phase_label": [f"M{i + 1}" for i in range(n)],
            "mean_temperature": numpy.linspace(14, 16, n),
            "slope_with_background": numpy.asarray(values, dtype=float) - 0.0001,
            "slope_corrected": numpy.asarray(values, dtype=float),
            "standard_error": [1e-6] * n,
            "r_squared": [0.99] * n,
            "do_unit": ["mg O2"] * n,
        }
    )


@pytest.fixture
def info4():
    return ifresp.input_info(
        ids=["Stickleback_1", "Stickleback_2", "Stickleback_3", "Stickleback_4"],
        masses=[1.86, 1.92, 2.23, 1.80],
        volumes=[250, 250, 250, 250],
        do_unit="mg/L",
    )


@pytest.fixture
def wide4():
    """4 chambers, 2 periods, chamber 1 decays with -0.001 per second in every period."""
    slopes = [
        [-0.001, -0.001],
        [-0.002, -0.0015],
        [-0.0012, -0.0018],
        [-0.0005, -0.0007],
    ]
    return make_wide(slopes)


@pytest.fixture
def pre_zero():
    return ifresp.prepare_test(make_test([0.0] * 4), test="pre")


@pytest.fixture
def pre4():
    return ifresp.prepare_test(make_test([-0.0001, -0.0002, -0.0001, -0.0002]), test="pre")


@pytest.fixture
def post4():
    return ifresp.prepare_test(make_test([-0.0003, -0.0004, -0.0002, -0.0006]), test="post")
