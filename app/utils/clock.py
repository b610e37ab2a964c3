"""Engine clock. All lifecycle timestamps are integer epoch milliseconds."""
import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


def format_duration_ms(duration_ms: int) -> str:
    """Render a remaining window as 'Xh Ym remaining', or 'Expired'."""
    if duration_ms <= 0:
        return "Expired"
    hours = duration_ms // (60 * 60 * 1000)
    minutes = (duration_ms % (60 * 60 * 1000)) // (60 * 1000)
    return f"{hours}h {minutes}m remaining"
