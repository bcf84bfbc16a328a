"""
Tests for energy history and action storage
Run with: pytest tests/test_storage.py -v
"""

from datetime import datetime, timedelta

from ess_dispatcher.models import Action, ActionReason, BatteryMode, EnergyStats, SolarMode
from ess_dispatcher.storage import Storage
from tests.builders import NOW, hourly_history, price_now


class TestEnergyHistory:
    """Test hourly history persistence"""

    def test_upsert_and_query(self, tmp_path):
        """Test stored hours come back sorted and filtered by range"""
        storage = Storage(tmp_path)
        history = hourly_history(NOW, 6)
        storage.upsert_energy_history(list(reversed(history)), NOW)

        result = storage.get_energy_history(NOW - timedelta(hours=3), NOW)
        assert [h.ts_hour_start for h in result] == [h.ts_hour_start for h in history[-3:]]
        assert result[0] == history[-3]

    def test_replace_hour(self, tmp_path):
        """Test that an hour is replaced, not duplicated"""
        storage = Storage(tmp_path)
        hour = datetime(2025, 6, 10, 9)
        storage.upsert_energy_history([EnergyStats(ts_hour_start=hour, home_kwh=0.4)], NOW)
        storage.upsert_energy_history([EnergyStats(ts_hour_start=hour, home_kwh=1.1)], NOW)
        result = storage.get_energy_history(hour, NOW)
        assert len(result) == 1
        assert result[0].home_kwh == 1.1

    def test_retention(self, tmp_path):
        """Test that hours older than two weeks are dropped"""
        storage = Storage(tmp_path)
        old = EnergyStats(ts_hour_start=NOW - timedelta(days=15))
        recent = EnergyStats(ts_hour_start=NOW - timedelta(days=13))
        storage.upsert_energy_history([old, recent], NOW)
        result = storage.get_energy_history(NOW - timedelta(days=30), NOW)
        assert result == [recent]

    def test_latest_time(self, tmp_path):
        """Test the most recent stored hour"""
        storage = Storage(tmp_path)
        assert storage.get_latest_energy_history_time() is None
        storage.upsert_energy_history(hourly_history(NOW, 4), NOW)
        assert storage.get_latest_energy_history_time() == datetime(2025, 6, 10, 11)

    def test_corrupt_file(self, tmp_path):
        """Test that an unreadable history file is treated as empty"""
        (tmp_path / 'energy_history.json').write_text("[broken")
        assert Storage(tmp_path).get_energy_history(NOW - timedelta(days=1), NOW) == []


class TestActions:
    """Test the action log"""

    def test_insert_and_read(self, tmp_path):
        """Test that actions are appended in order"""
        storage = Storage(tmp_path)
        assert storage.get_actions() == []
        storage.insert_action(Action(timestamp=NOW, battery_mode=BatteryMode.CHARGE_ANY,
                                     solar_mode=SolarMode.NO_CHANGE, reason=ActionReason.DEFICIT_CHARGE_NOW,
                                     current_price=price_now(0.10)))
        storage.insert_action(Action(timestamp=NOW, battery_mode=BatteryMode.NO_CHANGE,
                                     solar_mode=SolarMode.NO_CHANGE, reason=ActionReason.HAS_ALARMS, fault=True))

        actions = storage.get_actions()
        assert len(actions) == 2
        assert actions[0]['batteryMode'] == BatteryMode.CHARGE_ANY
        assert actions[0]['reason'] == "deficitCharge"
        assert actions[0]['currentPrice'] == 0.10
        assert actions[1]['fault'] is True
