"""Randomized, per-site request pacing.

Fixed-interval requests are an easy bot fingerprint, so every wait is drawn
from ``base + uniform(0, variance)``. A test mode divides every delay by a
fixed divisor so end-to-end runs finish quickly.
"""

import random
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DelayRange:
    """Delay window in milliseconds: base + uniform(0, variance)."""

    base: float
    variance: float

    @property
    def mean(self) -> float:
        return self.base + self.variance / 2


@dataclass
class PacingConfig:
    """Delay table and global limits, all in milliseconds."""

    # Delay after visiting each site, keyed by site id
    site_delays: Dict[str, DelayRange] = field(default_factory=lambda: {
        "vinted": DelayRange(base=2000, variance=3000),
        "ebay": DelayRange(base=2500, variance=2000),
        "cardmarket": DelayRange(base=4000, variance=2000),
    })
    # Used for site ids missing from site_delays
    default_site_delay: DelayRange = DelayRange(base=2000, variance=2000)
    # Pause between two watched items
    between_items: DelayRange = DelayRange(base=5000, variance=5000)
    # Extra pause per alert the previous item fired
    per_alert_backoff_ms: float = 600.0
    # Pause after each notification, grown by alerts already fired in the run
    notification_base_ms: float = 500.0
    notification_step_ms: float = 100.0
    notification_max_ms: float = 5000.0
    # Safety floor applied to every randomized delay
    minimum_delay_ms: float = 1000.0
    test_divisor: float = 10.0


@dataclass(frozen=True)
class RunEstimate:
    """Rough duration estimate for a full run."""

    total_ms: float
    fetching_ms: float
    site_delays_ms: float
    item_delays_ms: float

    @property
    def total_seconds(self) -> int:
        return round(self.total_ms / 1000)

    @property
    def total_minutes(self) -> int:
        return round(self.total_ms / 60000)


class PacingScheduler:
    """Computes randomized waits between site visits and watched items.

    Holds no state beyond the test-mode flag and the config table, so one
    instance can be shared by independent runs.
    """

    # Typical time spent fetching one search page (browser navigation + wait)
    AVG_FETCH_MS = 15000
    AVG_FETCH_MS_TEST = 3000

    def __init__(
        self,
        config: Optional[PacingConfig] = None,
        test_mode: bool = False,
        rng: Optional[Callable[[float, float], float]] = None,
    ):
        """Initialize pacing.

        Args:
            config: Delay table; defaults to PacingConfig()
            test_mode: Divide every delay by config.test_divisor
            rng: uniform(a, b) replacement, for deterministic tests
        """
        self.config = config or PacingConfig()
        self.test_mode = test_mode
        self._uniform = rng or random.uniform

    def _draw(self, delay_range: DelayRange) -> float:
        delay = delay_range.base + self._uniform(0, delay_range.variance)
        delay = max(delay, self.config.minimum_delay_ms)
        return self._scale(delay)

    def _scale(self, delay: float) -> float:
        if self.test_mode:
            return delay / self.config.test_divisor
        return delay

    def delay_after_site(self, site_id: str) -> float:
        """Delay in milliseconds to wait after visiting a site.

        Unknown site ids fall back to the default range.
        """
        delay_range = self.config.site_delays.get(site_id.lower())
        if delay_range is None:
            logger.debug("site_delay_not_configured", site=site_id)
            delay_range = self.config.default_site_delay
        return self._draw(delay_range)

    def delay_between_watched_items(self, alerts_fired: int = 0) -> float:
        """Delay in milliseconds before the next watched item.

        Grows linearly with the alerts the previous item fired, since a burst
        of webhook calls raises the chance of hitting rate limits.
        """
        delay = self._draw(self.config.between_items)
        if alerts_fired > 0:
            delay += self._scale(alerts_fired * self.config.per_alert_backoff_ms)
        return delay

    def notification_delay(self, alerts_fired_in_run: int = 0) -> float:
        """Delay in milliseconds after sending one notification."""
        delay = min(
            self.config.notification_base_ms
            + max(alerts_fired_in_run, 0) * self.config.notification_step_ms,
            self.config.notification_max_ms,
        )
        return self._scale(delay)

    def estimate_run_duration(self, item_count: int, site_count: int) -> RunEstimate:
        """Estimate how long a sequential run over items x sites takes.

        Uses mean delays rather than random draws.
        """
        if item_count <= 0 or site_count <= 0:
            return RunEstimate(total_ms=0, fetching_ms=0, site_delays_ms=0, item_delays_ms=0)

        avg_fetch = self.AVG_FETCH_MS_TEST if self.test_mode else self.AVG_FETCH_MS
        site_ranges = list(self.config.site_delays.values()) or [self.config.default_site_delay]
        avg_site_delay = self._scale(
            max(sum(r.mean for r in site_ranges) / len(site_ranges), self.config.minimum_delay_ms)
        )
        avg_item_delay = self._scale(
            max(self.config.between_items.mean, self.config.minimum_delay_ms)
        )

        fetching = item_count * site_count * avg_fetch
        # No site delay after the very last visit of the run
        site_delays = (item_count * site_count - 1) * avg_site_delay
        item_delays = (item_count - 1) * avg_item_delay

        return RunEstimate(
            total_ms=fetching + site_delays + item_delays,
            fetching_ms=fetching,
            site_delays_ms=site_delays,
            item_delays_ms=item_delays,
        )

    def enable_test_mode(self) -> None:
        self.test_mode = True
        logger.info("pacing_test_mode_enabled", divisor=self.config.test_divisor)

    def disable_test_mode(self) -> None:
        self.test_mode = False
        logger.info("pacing_test_mode_disabled")
