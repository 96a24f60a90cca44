"""Tests for randomized request pacing."""

import pytest

from cardwatch.scrapers.utils.pacing import DelayRange, PacingConfig, PacingScheduler


def _lowest(a, b):
    return a


def _highest(a, b):
    return b


class TestSiteDelays:
    def test_vinted_in_test_mode_stays_in_bounds(self):
        pacing = PacingScheduler(test_mode=True)
        minimum = pacing.config.minimum_delay_ms / pacing.config.test_divisor

        for _ in range(500):
            delay = pacing.delay_after_site("vinted")
            assert minimum <= delay <= 500

    def test_range_edges(self):
        assert PacingScheduler(rng=_lowest).delay_after_site("vinted") == 2000
        assert PacingScheduler(rng=_highest).delay_after_site("vinted") == 5000
        assert PacingScheduler(rng=_highest).delay_after_site("ebay") == 4500
        assert PacingScheduler(rng=_highest).delay_after_site("cardmarket") == 6000

    def test_site_id_is_case_insensitive(self):
        assert PacingScheduler(rng=_highest).delay_after_site("EBAY") == 4500

    def test_unknown_site_uses_default_range(self):
        pacing = PacingScheduler(rng=_highest)
        assert pacing.delay_after_site("leboncoin") == 4000

    def test_minimum_delay_floor(self):
        config = PacingConfig(
            site_delays={"fast": DelayRange(base=100, variance=0)},
            minimum_delay_ms=1000,
        )
        pacing = PacingScheduler(config, rng=_lowest)
        assert pacing.delay_after_site("fast") == 1000

        pacing.enable_test_mode()
        assert pacing.delay_after_site("fast") == 100


class TestItemAndNotificationDelays:
    def test_between_items_grows_with_alerts(self):
        pacing = PacingScheduler(rng=_lowest)
        assert pacing.delay_between_watched_items() == 5000
        assert pacing.delay_between_watched_items(alerts_fired=3) == 5000 + 3 * 600

    def test_between_items_scaled_in_test_mode(self):
        pacing = PacingScheduler(test_mode=True, rng=_lowest)
        assert pacing.delay_between_watched_items(alerts_fired=3) == pytest.approx(680)

    def test_notification_delay_steps_and_caps(self):
        pacing = PacingScheduler()
        assert pacing.notification_delay(0) == 500
        assert pacing.notification_delay(3) == 800
        assert pacing.notification_delay(1000) == pacing.config.notification_max_ms

    def test_notification_delay_test_mode(self):
        pacing = PacingScheduler(test_mode=True)
        assert pacing.notification_delay(0) == pytest.approx(50)

    def test_toggle_test_mode(self):
        pacing = PacingScheduler(rng=_lowest)
        pacing.enable_test_mode()
        assert pacing.test_mode
        assert pacing.delay_after_site("vinted") == pytest.approx(200)
        pacing.disable_test_mode()
        assert not pacing.test_mode
        assert pacing.delay_after_site("vinted") == 2000


class TestRunEstimate:
    def test_empty_run(self):
        estimate = PacingScheduler().estimate_run_duration(0, 2)
        assert estimate.total_ms == 0

    def test_uses_mean_delays(self):
        estimate = PacingScheduler().estimate_run_duration(item_count=2, site_count=2)

        assert estimate.fetching_ms == 4 * PacingScheduler.AVG_FETCH_MS
        # Mean of vinted 3500, ebay 3500, cardmarket 5000; no delay after the last visit
        assert estimate.site_delays_ms == pytest.approx(3 * 4000)
        assert estimate.item_delays_ms == pytest.approx(7500)
        assert estimate.total_ms == pytest.approx(60000 + 12000 + 7500)
        assert estimate.total_seconds == 80
