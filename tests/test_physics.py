import pytest

from evse_sim.physics import (
    current_amps,
    next_temperature,
    power_curve_multiplier,
    temperature_derating,
)


@pytest.mark.parametrize("soc", [20, 35.5, 50, 79.99, 80])
def test_curve_plateau(soc):
    assert power_curve_multiplier(soc) == 1.0


@pytest.mark.parametrize("soc,expected", [
    (0, 0.75),
    (10, 0.875),
    (85, 0.725),
    (90, 0.45),
    (95, 0.20),
    (100, 0.05),
])
def test_curve_values(soc, expected):
    assert power_curve_multiplier(soc) == pytest.approx(expected)


@pytest.mark.parametrize("breakpoint", [20, 80, 90, 95])
def test_curve_continuous_at_breakpoints(breakpoint):
    eps = 1e-7
    below = power_curve_multiplier(breakpoint - eps)
    above = power_curve_multiplier(breakpoint + eps)
    assert below == pytest.approx(power_curve_multiplier(breakpoint), abs=1e-5)
    assert above == pytest.approx(power_curve_multiplier(breakpoint), abs=1e-5)


def test_curve_bounded_everywhere():
    for tenth in range(0, 1001):
        assert 0.0 <= power_curve_multiplier(tenth / 10) <= 1.0


def test_linear_mode_disables_curve():
    assert power_curve_multiplier(5, linear=True) == 1.0
    assert power_curve_multiplier(99, linear=True) == 1.0


@pytest.mark.parametrize("temp,expected", [
    (25, 1.0),
    (59.9, 1.0),
    (60, 1.0),
    (67.5, 0.8),
    (75, 0.6),
    (80, 0.4),
    (85, 0.2),
    (120, 0.2),
])
def test_temperature_derating(temp, expected):
    assert temperature_derating(temp) == pytest.approx(expected)


def test_temperature_rises_under_load():
    assert next_temperature(25, 50, 50) == pytest.approx(25.08)


def test_temperature_cools_towards_ambient():
    t = next_temperature(45, 0, 50)
    assert t == pytest.approx(45 - 0.012 * 20)
    assert t > 25


def test_temperature_clamped():
    assert next_temperature(25, 0, 50) == 25
    assert next_temperature(85, 50, 50) <= 85
    assert next_temperature(200, 50, 50) == 85


def test_temperature_without_max_power():
    assert next_temperature(30, 10, 0) == pytest.approx(30 - 0.012 * 5)


def test_current_amps():
    assert current_amps(50, 400) == pytest.approx(125)
    assert current_amps(0, 400) == 0.0
