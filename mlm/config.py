"""Engine configuration read from environment variables."""
import os
from dataclasses import dataclass
from datetime import timedelta

from mlm.logging import get_logger

logger = get_logger(__name__)


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    """Read a positive integer from the environment, falling back on bad values."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using default %s", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s=%s is below %s, using default %s", name, value, minimum, default)
        return default
    return value


@dataclass(frozen=True)
class EngineSettings:
    """Tunables for rank and metrics computation.

    Passed to RankService and MetricsService explicitly so tests and
    callers can run with different values side by side.
    """

    metrics_ttl: timedelta = timedelta(hours=1)
    batch_size: int = 20
    max_upline_hops: int = 100
    order_window: timedelta = timedelta(days=30)
    progress_log_every: int = 50

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be a positive integer")
        if self.max_upline_hops < 1:
            raise ValueError("max_upline_hops must be a positive integer")
        if self.metrics_ttl <= timedelta(0):
            raise ValueError("metrics_ttl must be positive")

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from METRICS_* / MAX_UPLINE_HOPS / ORDER_WINDOW_DAYS."""
        return cls(
            metrics_ttl=timedelta(seconds=_env_int("METRICS_TTL_SECONDS", 3600)),
            batch_size=_env_int("METRICS_BATCH_SIZE", 20),
            max_upline_hops=_env_int("MAX_UPLINE_HOPS", 100),
            order_window=timedelta(days=_env_int("ORDER_WINDOW_DAYS", 30)),
        )
