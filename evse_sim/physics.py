"""Deterministic charging physics, evaluated once per simulation tick."""

AMBIENT_C = 25.0
MAX_TEMPERATURE_C = 85.0

HEAT_PER_TICK = 0.08       # deg C per tick at full load
COOLING_RATE = 0.012       # fraction of the gap above ambient shed per tick

# (soc, multiplier) breakpoints of the DC fast-charge taper
_CURVE = [
    (0.0, 0.75),
    (20.0, 1.0),
    (80.0, 1.0),
    (90.0, 0.45),
    (95.0, 0.20),
    (100.0, 0.05),
]

# (temperature, derating) breakpoints
_DERATING = [
    (60.0, 1.0),
    (75.0, 0.6),
    (85.0, 0.2),
]


def _interpolate(points, x):
    if x <= points[0][0]:
        return points[0][1]
    for (x0, y0), (x1, y1) in zip(points, points[1:]):
        if x <= x1:
            return y0 + (y1 - y0) * (x - x0) / (x1 - x0)
    return points[-1][1]


def power_curve_multiplier(soc: float, linear: bool = False) -> float:
    """Fraction of max power the battery accepts at ``soc`` percent.

    Ramps 0.75 -> 1.0 below 20 %, holds 1.0 up to 80 %, then tapers through
    0.45 at 90 % and 0.20 at 95 % down to 0.05 at 100 %. Linear mode disables
    the curve entirely.
    """
    if linear:
        return 1.0
    return _interpolate(_CURVE, min(max(soc, 0.0), 100.0))


def temperature_derating(temp_c: float) -> float:
    """Power derating for the connector temperature, never below 0.2."""
    return max(0.2, _interpolate(_DERATING, temp_c))


def next_temperature(current: float, power_kw: float, max_power_kw: float,
                     ambient_c: float = AMBIENT_C) -> float:
    load = power_kw / max_power_kw if max_power_kw > 0 else 0.0
    temp = current + HEAT_PER_TICK * load - COOLING_RATE * (current - ambient_c)
    return min(max(temp, ambient_c), MAX_TEMPERATURE_C)


def current_amps(power_kw: float, voltage_v: float) -> float:
    if power_kw <= 0 or voltage_v <= 0:
        return 0.0
    return power_kw * 1000 / voltage_v
