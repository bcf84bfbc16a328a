"""AlphaESS API client for system status, energy history and mode changes"""

import logging
import math
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from alphaess.alphaess import alphaess

from .models import BatteryMode, EnergyStats, SolarMode, SystemAlarm, SystemStatus, truncate_hour
from .settings import Settings

logger = logging.getLogger(__name__)

FULL_DAY_PERIOD = ("00:00", "23:45")
EMS_STATUS_NORMAL = "Normal"


class ESSClient:
    """Handles all AlphaESS API interactions"""

    def __init__(self, app_id: str, app_secret: str, serial_number: str, min_soc: int, max_soc: int,
                 charge_rate_kw: float, discharge_rate_kw: float = 0.0):
        self.client = alphaess(app_id, app_secret)
        self.serial_number = serial_number
        self.MIN_SOC = min_soc
        self.MAX_SOC = max_soc
        self.charge_rate_kw = charge_rate_kw
        self.discharge_rate_kw = discharge_rate_kw
        self.export_solar = False
        self.grid_charge_allowed = False

    def apply_settings(self, settings: Settings) -> None:
        """Export cannot be switched through the API, so the configured policy is what we report"""
        self.export_solar = settings.grid_export_solar
        self.grid_charge_allowed = settings.grid_charge_batteries

    async def _system_data(self) -> Dict:
        data = await self.client.getdata()
        if isinstance(data, list):
            for item in data:
                if item.get('sysSn') == self.serial_number:
                    return item
            return data[0] if data else {}
        return data or {}

    async def get_status(self) -> Optional[SystemStatus]:
        """Get current telemetry merged with the charge/discharge configuration"""
        try:
            data = await self._system_data()
            charge_config = await self.client.getChargeConfigInfo(sysSn=self.serial_number) or {}
            discharge_config = await self.client.getDisChargeConfigInfo(sysSn=self.serial_number) or {}
        except Exception as e:
            logger.error(f"Failed to get system status: {e}")
            return None

        last_power = data.get('LastPower') or {}
        soc = float(last_power.get('soc', 0))

        gross_capacity = float(data.get('cobat', 0))
        usable_percentage = float(data.get('usCapacity', 100))
        capacity = gross_capacity * (usable_percentage / 100)

        discharge_held = int(discharge_config.get('ctrDis', 0)) == 1
        reserve = float(discharge_config.get('batUseCap', self.MIN_SOC))
        grid_charge_on = int(charge_config.get('gridCharge', 0)) == 1
        # discharge released to the normal reserve is the LOAD state
        released = not discharge_held and reserve <= self.MIN_SOC

        ems_status = data.get('emsStatus')
        alarms = ()
        if ems_status and ems_status != EMS_STATUS_NORMAL:
            alarms = (SystemAlarm(name="ems", description=f"EMS status {ems_status}", code=str(ems_status)),)

        status = SystemStatus(
            battery_soc=soc,
            battery_kw=float(last_power.get('pbat', 0)) / 1000,
            solar_kw=float(last_power.get('ppv', 0)) / 1000,
            home_kw=float(last_power.get('pload', 0)) / 1000,
            grid_kw=float(last_power.get('pgrid', 0)) / 1000,
            battery_capacity_kwh=capacity,
            max_battery_charge_kw=self.charge_rate_kw,
            max_battery_discharge_kw=self.discharge_rate_kw,
            can_export_solar=self.export_solar,
            can_export_battery=False,
            can_import_battery=grid_charge_on or (released and self.grid_charge_allowed),
            elevated_min_battery_soc=discharge_held or reserve > self.MIN_SOC,
            battery_above_min_soc=soc >= reserve,
            alarms=alarms,
            timestamp=datetime.now(),
        )
        logger.info(f"🔋 Battery SOC: {soc}% ({status.battery_kw:+.2f} kW), capacity {capacity:.1f} kWh, "
                    f"solar {status.solar_kw:.2f} kW, home {status.home_kw:.2f} kW, grid {status.grid_kw:+.2f} kW")
        return status

    async def get_energy_history(self, start: datetime, end: datetime) -> Optional[List[EnergyStats]]:
        """Hourly energy stats for [start, end) built from 5-minute power samples"""
        samples = []
        day = start.date()
        try:
            while day <= end.date():
                day_samples = await self.client.getOneDayPowerBySn(sysSn=self.serial_number, queryDate=str(day))
                samples.extend(day_samples or [])
                day += timedelta(days=1)
        except Exception as e:
            logger.error(f"Failed to get energy history for {day}: {e}")
            return None

        history = aggregate_hourly(samples, start, end)
        logger.debug(f"ess_client.get_energy_history start={start:%Y-%m-%d %H:%M} end={end:%Y-%m-%d %H:%M} "
                     f"samples={len(samples)} hours={len(history)}")
        return history

    async def set_modes(self, battery_mode: BatteryMode, solar_mode: SolarMode, current_soc: float) -> bool:
        """Translate a battery mode into charge/discharge configuration"""
        if solar_mode != SolarMode.NO_CHANGE:
            logger.warning(f"Solar export control is not available through the AlphaESS API, ignoring {solar_mode.name}")

        # holding the reserve at the current SOC stops discharge without forcing a charge
        hold_soc = min(self.MAX_SOC, max(self.MIN_SOC, int(math.ceil(current_soc))))

        if battery_mode == BatteryMode.NO_CHANGE:
            return True
        if battery_mode == BatteryMode.CHARGE_ANY:
            return (await self.set_charging_schedule(True, FULL_DAY_PERIOD)
                    and await self.set_discharge_schedule(True, hold_soc))
        if battery_mode in (BatteryMode.CHARGE_SOLAR, BatteryMode.STANDBY):
            return (await self.set_charging_schedule(False)
                    and await self.set_discharge_schedule(True, hold_soc))
        if battery_mode == BatteryMode.LOAD:
            return (await self.set_charging_schedule(False)
                    and await self.set_discharge_schedule(False, self.MIN_SOC))

        logger.error(f"Unsupported battery mode: {battery_mode}")
        return False

    async def set_charging_schedule(self, enable: bool, period1: Optional[Tuple[str, str]] = None,
                                    period2: Optional[Tuple[str, str]] = None) -> bool:
        """Set battery grid charging schedule"""
        try:
            t1_start, t1_end = period1 if period1 else ("00:00", "00:00")
            t2_start, t2_end = period2 if period2 else ("00:00", "00:00")

            await self.client.updateChargeConfigInfo(
                sysSn=self.serial_number, batHighCap=self.MAX_SOC, gridCharge=1 if enable else 0,
                timeChaf1=t1_start, timeChae1=t1_end, timeChaf2=t2_start, timeChae2=t2_end
            )

            if enable:
                logger.info(f"  ✓ Grid charging enabled: {t1_start}-{t1_end}")
            else:
                logger.info("  ✓ Grid charging disabled")
            return True
        except Exception as e:
            logger.error(f"Failed to set charging schedule: {e}")
            return False

    async def set_discharge_schedule(self, hold: bool, reserve_soc: int) -> bool:
        """Hold the battery at reserve_soc (discharge control with no windows) or release it"""
        try:
            await self.client.updateDisChargeConfigInfo(
                sysSn=self.serial_number, batUseCap=reserve_soc, ctrDis=1 if hold else 0,
                timeDisf1="00:00", timeDise1="00:00", timeDisf2="00:00", timeDise2="00:00"
            )

            if hold:
                logger.info(f"  ✓ Discharge held, reserve {reserve_soc}%")
            else:
                logger.info(f"  ✓ Discharge released, reserve {reserve_soc}%")
            return True
        except Exception as e:
            logger.error(f"Failed to set discharge schedule: {e}")
            return False

    async def close(self):
        """Close the API client"""
        await self.client.close()


def aggregate_hourly(samples: List[Dict], start: datetime, end: datetime) -> List[EnergyStats]:
    """Average power samples (W) per hour; the mean power over an hour is its energy in Wh"""
    buckets: Dict[datetime, List[Dict]] = defaultdict(list)
    for sample in samples:
        upload_time = sample.get('uploadTime')
        if not upload_time:
            continue
        ts = datetime.strptime(upload_time, '%Y-%m-%d %H:%M:%S')
        hour = truncate_hour(ts)
        if truncate_hour(start) <= hour < end:
            buckets[hour].append(sample)

    def mean_kwh(points: List[Dict], key: str) -> float:
        return sum(float(p.get(key) or 0) for p in points) / len(points) / 1000

    history = []
    for hour in sorted(buckets):
        points = buckets[hour]
        socs = [float(p.get('cbat') or 0) for p in points]
        history.append(EnergyStats(
            ts_hour_start=hour,
            solar_kwh=mean_kwh(points, 'ppv'),
            home_kwh=mean_kwh(points, 'load'),
            grid_export_kwh=mean_kwh(points, 'feedIn'),
            grid_import_kwh=mean_kwh(points, 'gridCharge'),
            min_battery_soc=min(socs),
            max_battery_soc=max(socs),
        ))
    return history
