import pytest

from ess_dispatcher.models import SystemStatus
from ess_dispatcher.settings import Settings


@pytest.fixture
def base_status() -> SystemStatus:
    """10 kWh battery at 50%, idle, everything allowed"""
    return SystemStatus(
        battery_soc=50.0,
        battery_capacity_kwh=10.0,
        max_battery_charge_kw=5.0,
        home_kw=1.0,
        can_import_battery=True,
        can_export_battery=True,
        can_export_solar=True,
    )


@pytest.fixture
def base_settings() -> Settings:
    return Settings(
        min_battery_soc=20.0,
        always_charge_under_dollars_per_kwh=0.0,
        grid_charge_batteries=True,
        grid_export_solar=True,
        min_arbitrage_difference_dollars_per_kwh=0.03,
        min_deficit_price_difference_dollars_per_kwh=0.02,
        ignore_hour_usage_over_multiple=2.0,
    )
