from datetime import datetime, timezone
from typing import Optional

ROUND_DURATION_S = 10  # producer's nominal round length


def time_based_round(now: Optional[datetime] = None) -> int:
    """
    The producer's wall-clock round estimate: whole rounds elapsed since
    12:00 UTC today (never below 1). Reported next to the engine's own counter
    so operators can see how far the two have drifted.
    """
    now = now or datetime.now(timezone.utc)
    base = now.replace(hour=12, minute=0, second=0, microsecond=0)
    return max(1, int((now - base).total_seconds() // ROUND_DURATION_S))


def epoch_ms(seconds: Optional[float]) -> Optional[int]:
    return int(seconds * 1000) if seconds is not None else None
