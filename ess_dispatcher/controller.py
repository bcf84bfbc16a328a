"""Rule engine deciding the battery and solar modes for the next interval"""

import logging
from datetime import datetime
from typing import List, Optional

from .energy_model import build_hourly_energy_model
from .finalizer import finalize_battery_mode, finalize_solar_mode
from .models import (Action, ActionReason, BatteryMode, Decision, EnergyStats, Price, SimHour, SolarMode,
                     SystemStatus)
from .settings import Settings
from .simulator import ForwardSimulator, SimulationResult, kitchen_time
from .solar_trend import calculate_solar_trend

logger = logging.getLogger(__name__)


class Controller:
    """Stateless decision engine; every input is supplied per call and never modified"""

    def decide(self, status: SystemStatus, current_price: Price, future_prices: List[Price],
               history: List[EnergyStats], settings: Settings, now: Optional[datetime] = None) -> Decision:
        """Pick the battery/solar modes for now, collapsed to NO_CHANGE where already in effect"""
        now = now or datetime.now()
        logger.debug(f"controller.decide soc={status.battery_soc:.1f} battery_kw={status.battery_kw:.2f} "
                     f"solar_kw={status.solar_kw:.2f} home_kw={status.home_kw:.2f} "
                     f"price={current_price.dollars_per_kwh:.3f}")

        solar_mode = SolarMode.ANY if settings.grid_export_solar else SolarMode.NO_EXPORT

        # Never pay to push power onto the grid, but keep going so charging rules still apply
        if current_price.dollars_per_kwh < 0:
            solar_mode = SolarMode.NO_EXPORT
            logger.debug(f"controller.negative_price price={current_price.dollars_per_kwh:.3f} solar=no_export")

        def finalize(battery_mode: BatteryMode, reason: ActionReason, description: str, explanation: str,
                     sim: Optional[SimulationResult] = None) -> Decision:
            action = Action(
                timestamp=now,
                battery_mode=finalize_battery_mode(battery_mode, status, settings),
                solar_mode=finalize_solar_mode(solar_mode, status),
                target_battery_mode=battery_mode,
                target_solar_mode=solar_mode,
                reason=reason,
                description=description,
                current_price=current_price,
                system_status=status,
                hit_deficit_at=sim.hit_deficit_at if sim else None,
                hit_capacity_at=sim.hit_capacity_at if sim else None,
            )
            return Decision(action=action, explanation=explanation, simulation=sim.hours if sim else [])

        if current_price.dollars_per_kwh < settings.always_charge_under_dollars_per_kwh:
            description = (f"Price Low ({current_price.dollars_per_kwh:.3f} < "
                           f"{settings.always_charge_under_dollars_per_kwh:.3f}). Charging.")
            if current_price.dollars_per_kwh < 0:
                description += " (Export Disabled due to Negative Price)"
            logger.debug(f"controller.always_charge price={current_price.dollars_per_kwh:.3f} "
                         f"threshold={settings.always_charge_under_dollars_per_kwh:.3f}")
            return finalize(BatteryMode.CHARGE_ANY, ActionReason.ALWAYS_CHARGE_BELOW_THRESHOLD,
                            description, "Always Charge Threshold")

        if status.battery_capacity_kwh <= 0:
            return finalize(BatteryMode.STANDBY, ActionReason.MISSING_BATTERY,
                            "Battery Config Missing or Capacity 0. Standby.", "Zero Battery Capacity")

        sim = self.run_simulation(status, current_price, future_prices, history, settings, now)

        if sim.should_charge:
            return finalize(BatteryMode.CHARGE_ANY, sim.charge_reason,
                            f"Charging Optimized: {sim.charge_description}", "Simulation Optimized Charge", sim)

        if sim.hit_deficit:
            # save the battery for the most expensive hour still ahead
            if current_price.dollars_per_kwh < sim.max_price:
                logger.debug(f"controller.save_for_peak price={current_price.dollars_per_kwh:.3f} "
                             f"max_price={sim.max_price:.3f}")
                description = (f"Deficit predicted at {kitchen_time(sim.hit_deficit_at)} and higher prices later "
                               f"(${current_price.dollars_per_kwh:.3f} < ${sim.max_price:.3f}).")
                return finalize(BatteryMode.STANDBY, ActionReason.DEFICIT_SAVE_FOR_PEAK, description,
                                "Deficit + Save for Peak", sim)

            logger.debug(f"controller.use_at_peak price={current_price.dollars_per_kwh:.3f}")
            return finalize(BatteryMode.LOAD, ActionReason.DISCHARGE_AT_PEAK,
                            "Deficit predicted but Current Price is Peak.", "Use Battery at Peak", sim)

        logger.debug(f"controller.sufficient_battery min_energy={sim.min_energy_kwh:.2f} "
                     f"max_energy={sim.max_energy_kwh:.2f}")
        return finalize(BatteryMode.LOAD, ActionReason.SUFFICIENT_BATTERY, "Sufficient Battery.",
                        "Sufficient Battery", sim)

    def run_simulation(self, status: SystemStatus, current_price: Price, future_prices: List[Price],
                       history: List[EnergyStats], settings: Settings, now: datetime) -> SimulationResult:
        model = build_hourly_energy_model(history, settings.ignore_hour_usage_over_multiple, now)
        trend = calculate_solar_trend(history, model, now)
        logger.debug(f"controller.solar_trend trend={trend:.2f}")
        return ForwardSimulator(settings).run(status, current_price, future_prices, model, trend, now)

    def simulate(self, status: SystemStatus, current_price: Price, future_prices: List[Price],
                 history: List[EnergyStats], settings: Settings, now: Optional[datetime] = None) -> List[SimHour]:
        """Simulated timeline for display; stops where a charge-now signal would fire"""
        if status.battery_capacity_kwh <= 0:
            return []
        return self.run_simulation(status, current_price, future_prices, history, settings,
                                   now or datetime.now()).hours
