from typing import Optional

from app.core.enums import TrendDirection


def classify_trend(value: Optional[float], baseline: Optional[float], margin: float = 5) -> Optional[TrendDirection]:
    """UP / DOWN when value is more than `margin` points away from baseline, FLAT otherwise.

    None when either side has no data.
    """
    if value is None or baseline is None:
        return None
    if value > baseline + margin:
        return TrendDirection.UP
    if value < baseline - margin:
        return TrendDirection.DOWN
    return TrendDirection.FLAT
