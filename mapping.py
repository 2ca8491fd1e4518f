"""
Small numeric helpers shared by the audio and gesture code.
All functions are pure; any running state (e.g. an EMA accumulator) is held by the caller.
"""


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]"""
    return max(low, min(high, value))


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def inv_lerp(a: float, b: float, value: float) -> float:
    """Inverse of lerp - where value sits between a and b (0 when the range is empty)"""
    if a == b:
        return 0.0
    return (value - a) / (b - a)


def remap(value: float, in_low: float, in_high: float, out_low: float, out_high: float) -> float:
    """Map value from one range onto another (no clamping)"""
    return lerp(out_low, out_high, inv_lerp(in_low, in_high, value))


def ema(previous: float, sample: float, alpha: float = 0.15) -> float:
    """Exponential moving average step: alpha is the weight of the new sample"""
    return previous + alpha * (sample - previous)
