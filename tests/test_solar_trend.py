"""
Tests for the same-day solar trend
Run with: pytest tests/test_solar_trend.py -v
"""

from datetime import datetime

import pytest

from ess_dispatcher.energy_model import build_hourly_energy_model
from ess_dispatcher.models import EnergyStats
from ess_dispatcher.solar_trend import MAX_TREND_RATIO, calculate_solar_trend
from tests.builders import NOW


def solar_days(today_solar, prior_days=2, prior_solar=1.0, hours=(10, 11)):
    """Solar records at `hours` for prior days plus today"""
    history = []
    for day in range(prior_days, 0, -1):
        for hour in hours:
            history.append(EnergyStats(ts_hour_start=datetime(2025, 6, 10 - day, hour), solar_kwh=prior_solar))
    for hour in hours:
        history.append(EnergyStats(ts_hour_start=datetime(2025, 6, 10, hour), solar_kwh=today_solar))
    return history


def trend(history):
    model = build_hourly_energy_model(history, 0.0, NOW)
    return calculate_solar_trend(history, model, NOW)


class TestSolarTrend:
    """Test the ratio of today's solar to the model"""

    def test_too_little_history(self):
        """Test that fewer than 2 records give a neutral trend"""
        assert trend([]) == 1.0
        assert trend([EnergyStats(ts_hour_start=datetime(2025, 6, 10, 11), solar_kwh=5.0)]) == 1.0

    def test_no_same_day_records(self):
        """Test that history from previous days only gives exactly 1.0"""
        history = [r for r in solar_days(5.0) if r.ts_hour_start.date() != NOW.date()]
        assert trend(history) == 1.0

    def test_previous_hour_missing(self):
        """Test that a gap before the latest hour gives a neutral trend"""
        history = solar_days(2.0, hours=(9, 11))
        assert trend(history) == 1.0

    def test_model_expects_no_solar(self):
        """Test that night hours (no modeled solar) give a neutral trend"""
        history = solar_days(0.0, prior_solar=0.0)
        assert trend(history) == 1.0

    def test_within_threshold(self):
        """Test that today within 10% of the model is treated as normal"""
        history = solar_days(1.05)
        assert trend(history) == 1.0

    def test_sunnier_than_usual(self):
        """Test the ratio when today is sunnier than the model"""
        # model averages include today: (1 + 1 + 2) / 3 per hour
        history = solar_days(2.0)
        assert trend(history) == pytest.approx(1.5)

    def test_cloudier_than_usual(self):
        """Test the ratio when today is darker than the model"""
        # model: (1 + 1 + 0.25) / 3 = 0.75 per hour
        history = solar_days(0.25)
        assert trend(history) == pytest.approx(0.25 / 0.75)

    def test_capped(self):
        """Test that the ratio never exceeds the cap"""
        history = solar_days(20.0, prior_days=5)
        assert trend(history) == MAX_TREND_RATIO
