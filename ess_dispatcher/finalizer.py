"""Collapse target modes to NO_CHANGE when the system already behaves as intended"""

import logging

from .models import BatteryMode, SolarMode, SystemStatus
from .settings import Settings

logger = logging.getLogger(__name__)

# Slack for losses and float noise when comparing charge rate to solar surplus
GRID_CHARGE_TOLERANCE_KW = 0.1
FULL_SOC = 99


def is_charging_from_grid(status: SystemStatus) -> bool:
    """True if the battery charges faster than the solar surplus can supply"""
    if status.battery_kw < -GRID_CHARGE_TOLERANCE_KW and status.grid_kw > 0:
        solar_surplus = status.solar_kw - status.home_kw
        # battery_kw is negative while charging
        return solar_surplus < 0 or -status.battery_kw > solar_surplus + GRID_CHARGE_TOLERANCE_KW
    return False


def finalize_battery_mode(target: BatteryMode, status: SystemStatus, settings: Settings) -> BatteryMode:
    """Return NO_CHANGE when the device already reflects target, else target"""
    charging_or_full = status.battery_kw < 0 or status.battery_soc >= FULL_SOC

    if target == BatteryMode.CHARGE_ANY:
        # the reserve must already be elevated, otherwise charging was not forced by us
        if (charging_or_full and status.elevated_min_battery_soc
                and (not settings.grid_charge_batteries or status.can_import_battery)):
            return BatteryMode.NO_CHANGE
        return target

    if target == BatteryMode.CHARGE_SOLAR:
        if charging_or_full and status.elevated_min_battery_soc and not status.can_import_battery:
            return BatteryMode.NO_CHANGE
        return target

    if target == BatteryMode.STANDBY:
        from_grid = is_charging_from_grid(status)
        logger.debug(f"finalizer.standby battery_kw={status.battery_kw:.2f} grid_kw={status.grid_kw:.2f} "
                     f"solar_kw={status.solar_kw:.2f} home_kw={status.home_kw:.2f} from_grid={from_grid} "
                     f"soc={status.battery_soc:.0f} above_min={status.battery_above_min_soc} "
                     f"elevated={status.elevated_min_battery_soc}")
        if status.battery_kw > 0:
            # discharging above an already elevated reserve, likely solar topped it up after a previous standby
            if status.battery_above_min_soc and status.elevated_min_battery_soc:
                return BatteryMode.NO_CHANGE
            return target
        if from_grid:
            return target
        # idle, or charging from solar which standby would not stop anyway
        return BatteryMode.NO_CHANGE

    if target == BatteryMode.LOAD:
        logger.debug(f"finalizer.load soc={status.battery_soc:.0f} elevated={status.elevated_min_battery_soc} "
                     f"grid_charge={settings.grid_charge_batteries} can_import={status.can_import_battery}")
        # reserve not elevated means the battery is already used as much as possible
        if not status.elevated_min_battery_soc and (not settings.grid_charge_batteries or status.can_import_battery):
            return BatteryMode.NO_CHANGE
        return target

    return target


def finalize_solar_mode(target: SolarMode, status: SystemStatus) -> SolarMode:
    if target == SolarMode.NO_EXPORT and not status.can_export_solar:
        return SolarMode.NO_CHANGE
    if target == SolarMode.ANY and status.can_export_solar:
        return SolarMode.NO_CHANGE
    return target
