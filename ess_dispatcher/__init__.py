"""Home battery/solar dispatch decisions driven by prices, telemetry and history"""

from .controller import Controller
from .models import Action, ActionReason, BatteryMode, Decision, EnergyStats, Price, SolarMode, SystemStatus
from .settings import Settings, migrate_settings

__all__ = [
    'Action',
    'ActionReason',
    'BatteryMode',
    'Controller',
    'Decision',
    'EnergyStats',
    'Price',
    'Settings',
    'SolarMode',
    'SystemStatus',
    'migrate_settings',
]
