"""
Descriptive statistics over plain lists of floats.

Small, dependency-free helpers shared by the recorder, the quality scorer,
the benchmark runner and the dashboard.
"""


def mean(values: list[float]) -> float:
    """Arithmetic mean, 0.0 for an empty list."""
    return sum(values) / len(values) if values else 0.0


def percentile(values: list[float], pct: float) -> float:
    """
    Compute a percentile using linear interpolation.

    Uses the same method as numpy.percentile with the default linear
    interpolation. Returns 0.0 for an empty list.

    Args:
        values: List of numeric values
        pct: Percentile to compute (0-100)

    Returns:
        Interpolated percentile value
    """
    if not values:
        return 0.0
    if pct < 0 or pct > 100:
        raise ValueError("Percentile must be between 0 and 100")

    ordered = sorted(values)
    position = (pct / 100.0) * (len(ordered) - 1)
    lower = int(position)
    upper = min(lower + 1, len(ordered) - 1)
    fraction = position - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * fraction


def median(values: list[float]) -> float:
    """Median, 0.0 for an empty list."""
    return percentile(values, 50)


def interquartile_range(values: list[float]) -> float:
    """Spread between the 75th and 25th percentiles."""
    return percentile(values, 75) - percentile(values, 25)


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    """Limit a score to [low, high]."""
    return max(low, min(high, value))


def percent_change(current: float, previous: float) -> float:
    """
    Relative change in percent.

    When the previous value is zero the change is 100 if anything
    happened, else 0.
    """
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def stdev(values: list[float]) -> float:
    """Sample standard deviation, 0.0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    center = mean(values)
    return (sum((v - center) ** 2 for v in values) / (len(values) - 1)) ** 0.5
