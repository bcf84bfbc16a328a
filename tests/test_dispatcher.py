"""
Tests for the dispatch service
Run with: pytest tests/test_dispatcher.py -v
"""

from dataclasses import replace
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ess_dispatcher.dispatcher import Dispatcher
from ess_dispatcher.models import ActionReason, BatteryMode, SolarMode, SystemAlarm, SystemStatus
from ess_dispatcher.settings import CURRENT_SETTINGS_VERSION, Settings
from tests.builders import NOW, hourly_history, hourly_prices, price_now

STATUS = SystemStatus(
    battery_soc=50.0,
    battery_capacity_kwh=10.0,
    max_battery_charge_kw=5.0,
    can_import_battery=True,
    can_export_solar=True,
)

SETTINGS = Settings(
    min_battery_soc=20.0,
    always_charge_under_dollars_per_kwh=0.05,
    grid_charge_batteries=True,
    grid_export_solar=True,
    min_arbitrage_difference_dollars_per_kwh=0.03,
    min_deficit_price_difference_dollars_per_kwh=0.02,
)


@pytest.fixture
def config():
    """Mocked config with both __getitem__ and get()"""
    config_values = {
        'app_id': 'test_id',
        'app_secret': 'test_secret',
        'serial_number': 'TEST123',
        'charge_rate_kw': 5.0,
        'min_soc': 10,
        'max_soc': 100,
        'price_multiplier': 1.2,
        'history_days': 2,
    }
    mock_config_instance = MagicMock()
    mock_config_instance.__getitem__ = lambda self, key: config_values[key]
    mock_config_instance.get = lambda key, default=None: config_values.get(key, default)
    mock_config_instance.settings.return_value = SETTINGS
    mock_config_instance.settings_version = CURRENT_SETTINGS_VERSION
    mock_config_instance.config_path = 'config.yaml'
    return mock_config_instance


@pytest.fixture
def dispatcher(config, tmp_path, monkeypatch):
    """Dispatcher with mocked device and prices, storing under tmp_path"""
    monkeypatch.chdir(tmp_path)
    with patch('ess_dispatcher.dispatcher.Config') as mock_config, \
            patch('ess_dispatcher.ess_client.alphaess') as mock_client, \
            patch('ess_dispatcher.price_client.PriceFetcher'):
        mock_config.return_value = config

        mock_client_instance = MagicMock()
        mock_client_instance.close = AsyncMock()
        mock_client.return_value = mock_client_instance

        d = Dispatcher()
        d.ess_client.get_status = AsyncMock(return_value=STATUS)
        d.ess_client.get_energy_history = AsyncMock(return_value=[])
        d.ess_client.set_modes = AsyncMock(return_value=True)
        d.price_client.get_current_price = AsyncMock(return_value=price_now(0.03))
        d.price_client.get_future_prices = AsyncMock(return_value=hourly_prices(NOW, 23, lambda ts: 0.30))
        yield d


@pytest.mark.asyncio
class TestUpdate:
    """Test one decision cycle"""

    async def test_executes_action(self, dispatcher):
        """Test that a changed mode is sent to the device and logged"""
        action = await dispatcher.update(now=NOW)
        assert action.battery_mode == BatteryMode.CHARGE_ANY
        assert action.reason == ActionReason.ALWAYS_CHARGE_BELOW_THRESHOLD
        dispatcher.ess_client.set_modes.assert_awaited_once_with(BatteryMode.CHARGE_ANY, SolarMode.NO_CHANGE, 50.0)

        logged = dispatcher.storage.get_actions()
        assert len(logged) == 1
        assert logged[0]['reason'] == "alwaysChargeBelowThreshold"
        assert logged[0]['failed'] is False

    async def test_dry_run(self, dispatcher):
        """Test that a dry run decides and logs without commanding"""
        action = await dispatcher.update(dry_run=True, now=NOW)
        assert action.dry_run
        dispatcher.ess_client.set_modes.assert_not_awaited()
        assert dispatcher.storage.get_actions()[0]['dryRun'] is True

    async def test_dry_run_from_settings(self, dispatcher, config):
        """Test that the dry_run setting also suppresses commands"""
        config.settings.return_value = replace(SETTINGS, dry_run=True)
        action = await dispatcher.update(now=NOW)
        assert action.dry_run
        dispatcher.ess_client.set_modes.assert_not_awaited()

    async def test_set_modes_failure(self, dispatcher):
        """Test that a failed command is flagged and still logged"""
        dispatcher.ess_client.set_modes.return_value = False
        action = await dispatcher.update(now=NOW)
        assert action.failed
        assert action.error == "failed to set modes"
        assert action.description.endswith("(FAILED: failed to set modes)")
        assert dispatcher.storage.get_actions()[0]['failed'] is True

    async def test_already_in_effect(self, dispatcher):
        """Test that nothing is sent when both modes are unchanged"""
        dispatcher.price_client.get_current_price.return_value = price_now(0.10)
        dispatcher.price_client.get_future_prices.return_value = hourly_prices(NOW, 23, lambda ts: 0.10)
        action = await dispatcher.update(now=NOW)
        assert action.reason == ActionReason.SUFFICIENT_BATTERY
        assert action.battery_mode == BatteryMode.NO_CHANGE
        assert action.solar_mode == SolarMode.NO_CHANGE
        dispatcher.ess_client.set_modes.assert_not_awaited()
        assert len(dispatcher.storage.get_actions()) == 1

    async def test_no_status(self, dispatcher):
        """Test that no status means no decision"""
        dispatcher.ess_client.get_status.return_value = None
        assert await dispatcher.update(now=NOW) is None
        dispatcher.price_client.get_current_price.assert_not_awaited()
        assert dispatcher.storage.get_actions() == []

    async def test_no_current_price(self, dispatcher):
        """Test that no current price means no decision"""
        dispatcher.price_client.get_current_price.return_value = None
        assert await dispatcher.update(now=NOW) is None
        dispatcher.ess_client.set_modes.assert_not_awaited()
        assert dispatcher.storage.get_actions() == []

    async def test_no_future_prices(self, dispatcher):
        """Test that missing future prices still give a decision"""
        dispatcher.price_client.get_future_prices.return_value = None
        action = await dispatcher.update(now=NOW)
        assert action.battery_mode == BatteryMode.CHARGE_ANY

    async def test_paused(self, dispatcher, config):
        """Test that a paused dispatcher reads nothing and decides nothing"""
        config.settings.return_value = replace(SETTINGS, pause=True)
        assert await dispatcher.update(now=NOW) is None
        dispatcher.ess_client.get_status.assert_not_awaited()

    async def test_alarms(self, dispatcher):
        """Test that active alarms are logged as a fault and left alone"""
        status = replace(STATUS, alarms=(SystemAlarm(name="grid_fault"),))
        dispatcher.ess_client.get_status.return_value = status
        assert await dispatcher.update(now=NOW) is None
        logged = dispatcher.storage.get_actions()
        assert logged[0]['reason'] == "hasAlarms"
        assert logged[0]['description'] == "1 alarms present"
        assert logged[0]['fault'] is True
        dispatcher.ess_client.set_modes.assert_not_awaited()

    async def test_recent_history_used(self, dispatcher):
        """Test that the engine sees the last 72 hours of stored history"""
        dispatcher.storage.upsert_energy_history(hourly_history(NOW, 96), NOW)
        with patch.object(dispatcher.controller, 'decide', wraps=dispatcher.controller.decide) as decide:
            await dispatcher.update(now=NOW)
        history = decide.call_args.args[3]
        assert len(history) == 71
        assert all(h.ts_hour_start >= NOW - timedelta(hours=72) for h in history)


@pytest.mark.asyncio
class TestHistorySync:
    """Test pulling energy history from the device"""

    async def test_full_window(self, dispatcher):
        """Test an empty store syncs the whole window a day at a time"""
        dispatcher.ess_client.get_energy_history.return_value = hourly_history(NOW, 3)
        await dispatcher.sync_energy_history(NOW)

        calls = [c.args for c in dispatcher.ess_client.get_energy_history.await_args_list]
        assert calls == [
            (datetime(2025, 6, 8), datetime(2025, 6, 9)),
            (datetime(2025, 6, 9), datetime(2025, 6, 10)),
            (datetime(2025, 6, 10), NOW),
        ]
        assert dispatcher.storage.get_latest_energy_history_time() == datetime(2025, 6, 10, 11)

    async def test_resumes_from_latest(self, dispatcher):
        """Test that a later sync starts at the last stored hour"""
        dispatcher.storage.upsert_energy_history(hourly_history(NOW, 3), NOW)
        await dispatcher.sync_energy_history(NOW)
        dispatcher.ess_client.get_energy_history.assert_awaited_once_with(datetime(2025, 6, 10, 11), NOW)

    async def test_failed_day_skipped(self, dispatcher):
        """Test that a failed fetch does not stop the sync"""
        dispatcher.ess_client.get_energy_history.return_value = None
        await dispatcher.sync_energy_history(NOW)
        assert dispatcher.ess_client.get_energy_history.await_count == 3
        assert dispatcher.storage.get_latest_energy_history_time() is None


class TestSettings:
    """Test settings handed to the engine"""

    def test_current_version(self, dispatcher):
        """Test that current settings pass through"""
        assert dispatcher.load_settings() == SETTINGS

    def test_migrated(self, dispatcher, config):
        """Test that old settings get the defaults they predate"""
        config.settings.return_value = Settings()
        config.settings_version = 0
        settings = dispatcher.load_settings()
        assert settings.min_battery_soc == 20.0
        assert settings.always_charge_under_dollars_per_kwh == 0.05


@pytest.mark.asyncio
class TestRunOnce:
    """Test the command entry points"""

    async def test_simulate(self, dispatcher):
        """Test the simulated timeline for the current inputs"""
        dispatcher.price_client.get_current_price.return_value = price_now(0.10)
        dispatcher.price_client.get_future_prices.return_value = hourly_prices(NOW, 23, lambda ts: 0.10)
        hours = await dispatcher.simulate(now=NOW)
        assert len(hours) == 24
        assert hours[0].ts == NOW

    async def test_simulate_without_status(self, dispatcher):
        """Test that there is nothing to simulate without status"""
        dispatcher.ess_client.get_status.return_value = None
        assert await dispatcher.simulate(now=NOW) == []

    async def test_closes_client(self, dispatcher):
        """Test that the API client is closed after a run"""
        await dispatcher.run_once(dry_run=True)
        dispatcher.ess_client.client.close.assert_awaited_once()

    async def test_closes_client_on_error(self, dispatcher):
        """Test that the API client is closed when the update fails"""
        dispatcher.ess_client.get_status.side_effect = RuntimeError("boom")
        with pytest.raises(RuntimeError):
            await dispatcher.run_once()
        dispatcher.ess_client.client.close.assert_awaited_once()
