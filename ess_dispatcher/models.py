"""Data models for the ESS dispatcher"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import List, Optional

HOURS_PER_DAY = 24


class BatteryMode(IntEnum):
    """Battery operating mode requested from the device"""
    NO_CHANGE = 0
    STANDBY = 1
    CHARGE_ANY = 2
    CHARGE_SOLAR = 3
    LOAD = -1


class SolarMode(IntEnum):
    """Solar export policy requested from the device"""
    NO_CHANGE = 0
    NO_EXPORT = 1
    ANY = 2


class ActionReason(str, Enum):
    """Tag identifying which rule produced an action"""
    ALWAYS_CHARGE_BELOW_THRESHOLD = "alwaysChargeBelowThreshold"
    MISSING_BATTERY = "missingBattery"
    DEFICIT_CHARGE_NOW = "deficitCharge"
    ARBITRAGE_CHARGE_NOW = "arbitrageCharge"
    DEFICIT_SAVE_FOR_PEAK = "deficitSaveForPeak"
    DISCHARGE_AT_PEAK = "dischargeAtPeak"
    SUFFICIENT_BATTERY = "sufficientBattery"
    HAS_ALARMS = "hasAlarms"


@dataclass(frozen=True)
class Price:
    """Cost of electricity over [ts_start, ts_end)"""
    ts_start: datetime
    ts_end: datetime
    dollars_per_kwh: float
    grid_addl_dollars_per_kwh: float = 0.0
    provider: str = ""

    @property
    def grid_cost(self) -> float:
        """Base cost plus the delivery cost paid for energy pulled from the grid"""
        return self.dollars_per_kwh + self.grid_addl_dollars_per_kwh

    def __repr__(self):
        return f"Price({self.provider} {self.ts_start:%Y-%m-%d %H:%M} @ {self.dollars_per_kwh:.3f})"


@dataclass(frozen=True)
class SystemAlarm:
    name: str
    description: str = ""
    code: str = ""
    time: Optional[datetime] = None


@dataclass(frozen=True)
class SystemStatus:
    """Telemetry snapshot of the battery/solar system.

    battery_kw is positive while discharging and negative while charging,
    grid_kw is positive while importing.
    """
    battery_soc: float = 0.0
    battery_kw: float = 0.0
    solar_kw: float = 0.0
    home_kw: float = 0.0
    grid_kw: float = 0.0
    battery_capacity_kwh: float = 0.0
    max_battery_charge_kw: float = 0.0
    max_battery_discharge_kw: float = 0.0
    can_export_solar: bool = False
    can_export_battery: bool = False
    can_import_battery: bool = False
    elevated_min_battery_soc: bool = False
    battery_above_min_soc: bool = False
    alarms: tuple = ()
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class EnergyStats:
    """Aggregated energy flows for one physical hour"""
    ts_hour_start: Optional[datetime]
    solar_kwh: float = 0.0
    home_kwh: float = 0.0
    min_battery_soc: float = 0.0
    max_battery_soc: float = 0.0
    battery_charged_kwh: float = 0.0
    battery_used_kwh: float = 0.0
    grid_export_kwh: float = 0.0
    grid_import_kwh: float = 0.0
    battery_to_home_kwh: float = 0.0
    solar_to_home_kwh: float = 0.0
    solar_to_battery_kwh: float = 0.0
    solar_to_grid_kwh: float = 0.0
    battery_to_grid_kwh: float = 0.0


@dataclass(frozen=True)
class HourProfile:
    """Average solar and load for one hour of the day"""
    hour: int
    avg_solar_kwh: float = 0.0
    avg_home_load_kwh: float = 0.0


@dataclass(frozen=True)
class SimHour:
    """One hour of the simulated energy trajectory"""
    ts: datetime
    hour: int
    net_load_solar_kwh: float
    clamped_net_load_solar_kwh: float
    grid_charge_dollars_per_kwh: float
    solar_opp_dollars_per_kwh: float
    avg_home_load_kwh: float
    predicted_solar_kwh: float
    battery_kwh: float
    hit_capacity: bool
    hit_deficit: bool
    price: Price

    def __repr__(self):
        flags = ("C" if self.hit_capacity else "-") + ("D" if self.hit_deficit else "-")
        return (f"{self.ts:%H:%M} load={self.avg_home_load_kwh:.2f} solar={self.predicted_solar_kwh:.2f} "
                f"net={self.clamped_net_load_solar_kwh:+.2f} battery={self.battery_kwh:.2f} "
                f"price={self.price.dollars_per_kwh:.3f} {flags}")


@dataclass
class Action:
    """A control decision, as executed and logged by the service"""
    timestamp: datetime
    battery_mode: BatteryMode
    solar_mode: SolarMode
    target_battery_mode: BatteryMode = BatteryMode.NO_CHANGE
    target_solar_mode: SolarMode = SolarMode.NO_CHANGE
    reason: Optional[ActionReason] = None
    description: str = ""
    current_price: Optional[Price] = None
    system_status: Optional[SystemStatus] = None
    hit_deficit_at: Optional[datetime] = None
    hit_capacity_at: Optional[datetime] = None
    dry_run: bool = False
    fault: bool = False
    failed: bool = False
    error: str = ""

    def to_dict(self) -> dict:
        """JSON-friendly representation used by the action log"""
        price = self.current_price
        return {
            'timestamp': self.timestamp.isoformat(),
            'batteryMode': int(self.battery_mode),
            'solarMode': int(self.solar_mode),
            'targetBatteryMode': int(self.target_battery_mode),
            'targetSolarMode': int(self.target_solar_mode),
            'reason': self.reason.value if self.reason else None,
            'description': self.description,
            'currentPrice': price.dollars_per_kwh if price else None,
            'batterySOC': self.system_status.battery_soc if self.system_status else None,
            'deficitAt': self.hit_deficit_at.isoformat() if self.hit_deficit_at else None,
            'capacityAt': self.hit_capacity_at.isoformat() if self.hit_capacity_at else None,
            'dryRun': self.dry_run,
            'fault': self.fault,
            'failed': self.failed,
            'error': self.error,
        }


@dataclass(frozen=True)
class Decision:
    """Result of one pass through the rule engine"""
    action: Action
    explanation: str
    simulation: List[SimHour] = field(default_factory=list)

    @property
    def battery_mode(self) -> BatteryMode:
        return self.action.battery_mode

    @property
    def solar_mode(self) -> SolarMode:
        return self.action.solar_mode

    @property
    def description(self) -> str:
        return self.action.description

    def __repr__(self):
        return (f"Decision({self.action.reason.value if self.action.reason else '-'}: "
                f"battery={self.action.battery_mode.name} solar={self.action.solar_mode.name} | {self.explanation})")


def to_local(ts: datetime, now: datetime) -> datetime:
    """Express ts in the same clock as now so hours/dates compare correctly"""
    if now.tzinfo is None:
        return ts.astimezone().replace(tzinfo=None) if ts.tzinfo else ts
    return ts.astimezone(now.tzinfo) if ts.tzinfo else ts.replace(tzinfo=now.tzinfo)


def truncate_hour(ts: datetime) -> datetime:
    return ts.replace(minute=0, second=0, microsecond=0)
