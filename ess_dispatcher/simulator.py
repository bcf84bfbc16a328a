"""24-hour forward simulation of battery energy and prices"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from .energy_model import HourlyEnergyModel
from .models import HOURS_PER_DAY, ActionReason, Price, SimHour, SystemStatus, to_local, truncate_hour
from .settings import Settings

logger = logging.getLogger(__name__)

# Assumed time to charge 0->100% when the device does not report a charge rate
DEFAULT_FULL_CHARGE_HOURS = 3.0
# Shortest grid charge worth starting for arbitrage
MIN_CHARGE_MINUTES = 10
# Added before truncating charge hours so only a small remainder rounds down
CHARGE_HOURS_ROUNDING = 0.84


def kitchen_time(ts: datetime) -> str:
    """Format like 3:04PM"""
    return ts.strftime('%I:%M%p').lstrip('0')


@dataclass
class SimSlot:
    """Inputs for one simulated hour, before the battery walk"""
    ts: datetime
    hour: int
    net_load_solar_kwh: float
    grid_charge_dollars_per_kwh: float
    solar_opp_dollars_per_kwh: float
    avg_home_load_kwh: float
    predicted_solar_kwh: float
    price: Price


@dataclass
class SimulationResult:
    """Outcome of the forward walk"""
    max_price: float
    charge_reason: Optional[ActionReason] = None
    charge_description: str = ""
    hit_deficit_at: Optional[datetime] = None
    hit_capacity_at: Optional[datetime] = None
    min_energy_kwh: float = 0.0
    max_energy_kwh: float = 0.0
    hours: List[SimHour] = field(default_factory=list)

    @property
    def should_charge(self) -> bool:
        return self.charge_reason is not None

    @property
    def hit_deficit(self) -> bool:
        return self.hit_deficit_at is not None


class ForwardSimulator:
    """Walks the next 24 hours hour-by-hour to find deficits and charge opportunities"""

    def __init__(self, settings: Settings):
        self.settings = settings

    def price_at(self, ts: datetime, current_price: Price, future_prices: List[Price], now: datetime) -> Price:
        """Future price covering ts's hour, or the current price moved to that hour"""
        hour = truncate_hour(ts)
        for price in future_prices:
            if truncate_hour(to_local(price.ts_start, now)) == hour:
                return price
        return Price(
            ts_start=hour,
            ts_end=hour + timedelta(hours=1),
            dollars_per_kwh=current_price.dollars_per_kwh,
            grid_addl_dollars_per_kwh=current_price.grid_addl_dollars_per_kwh,
            provider=current_price.provider,
        )

    def build_slots(self, now: datetime, current_price: Price, future_prices: List[Price],
                    model: HourlyEnergyModel, solar_trend: float) -> List[SimSlot]:
        """Timeline of the current hour plus the next 23"""
        slots = []
        for i in range(HOURS_PER_DAY):
            ts = now + timedelta(hours=i)
            price = self.price_at(ts, current_price, future_prices, now)
            profile = model[ts.hour]
            predicted_solar = profile.avg_solar_kwh * solar_trend
            net = profile.avg_home_load_kwh - predicted_solar
            # only the rest of the current hour is still ahead of us
            if i == 0:
                net *= now.minute / 60.0

            slots.append(SimSlot(
                ts=ts,
                hour=ts.hour,
                net_load_solar_kwh=net,
                grid_charge_dollars_per_kwh=price.grid_cost + self.settings.additional_fees_dollars_per_kwh,
                solar_opp_dollars_per_kwh=price.dollars_per_kwh if self.settings.grid_export_solar else 0.0,
                avg_home_load_kwh=profile.avg_home_load_kwh,
                predicted_solar_kwh=predicted_solar,
                price=price,
            ))
        return slots

    @staticmethod
    def nth_cheapest_cost(charge_costs: List[float], deficit_kwh: float, charge_kw: float) -> float:
        """Cost of the last hour needed to cover deficit_kwh if charged in the cheapest hours"""
        costs = sorted(charge_costs)
        hours_needed = max(1, int(deficit_kwh / charge_kw + CHARGE_HOURS_ROUNDING))
        if hours_needed > len(costs):
            return costs[-1]
        return costs[hours_needed - 1]

    def run(self, status: SystemStatus, current_price: Price, future_prices: List[Price],
            model: HourlyEnergyModel, solar_trend: float, now: datetime) -> SimulationResult:
        settings = self.settings
        capacity = status.battery_capacity_kwh
        available = capacity * (status.battery_soc / 100.0)
        min_kwh = capacity * (settings.min_battery_soc / 100.0)
        charge_kw = status.max_battery_charge_kw
        if charge_kw <= 0:
            charge_kw = capacity / DEFAULT_FULL_CHARGE_HOURS

        slots = self.build_slots(now, current_price, future_prices, model, solar_trend)
        result = SimulationResult(
            max_price=max([current_price.dollars_per_kwh] + [s.price.dollars_per_kwh for s in slots]),
            min_energy_kwh=available,
            max_energy_kwh=available,
        )
        if capacity <= 0:
            logger.debug(f"simulator.no_battery capacity={capacity:.2f}")
            return result

        charge_now_cost = current_price.grid_cost + settings.additional_fees_dollars_per_kwh

        energy = available
        hit_capacity = energy >= capacity
        if hit_capacity:
            result.hit_capacity_at = now
        charge_costs: List[float] = []

        for slot in slots:
            charge_costs.append(slot.grid_charge_dollars_per_kwh)

            net = slot.net_load_solar_kwh
            if net > 0:
                if 0 < status.max_battery_discharge_kw < net:
                    net = status.max_battery_discharge_kw
                energy -= net
            else:
                if 0 < status.max_battery_charge_kw < -net:
                    net = -status.max_battery_charge_kw
                energy = min(capacity, energy - net)
                # once full, any grid energy bought now would have been replaced by solar anyway
                if energy >= capacity:
                    if not hit_capacity:
                        logger.debug(f"simulator.hit_capacity energy={energy:.2f} capacity={capacity:.2f} hour={slot.hour}")
                        result.hit_capacity_at = slot.ts
                    hit_capacity = True

            result.min_energy_kwh = min(result.min_energy_kwh, energy)
            result.max_energy_kwh = max(result.max_energy_kwh, energy)

            below_min = energy < min_kwh
            if below_min and result.hit_deficit_at is None:
                logger.debug(f"simulator.hit_deficit energy={energy:.2f} min={min_kwh:.2f} hour={slot.hour}")
                result.hit_deficit_at = slot.ts

            result.hours.append(SimHour(
                ts=slot.ts,
                hour=slot.hour,
                net_load_solar_kwh=slot.net_load_solar_kwh,
                clamped_net_load_solar_kwh=net,
                grid_charge_dollars_per_kwh=slot.grid_charge_dollars_per_kwh,
                solar_opp_dollars_per_kwh=slot.solar_opp_dollars_per_kwh,
                avg_home_load_kwh=slot.avg_home_load_kwh,
                predicted_solar_kwh=slot.predicted_solar_kwh,
                battery_kwh=energy,
                hit_capacity=hit_capacity,
                hit_deficit=result.hit_deficit,
                price=slot.price,
            ))

            if below_min and settings.grid_charge_batteries:
                deficit = min_kwh - energy
                later_cost = self.nth_cheapest_cost(charge_costs, deficit, charge_kw)
                if charge_now_cost + settings.min_deficit_price_difference_dollars_per_kwh <= later_cost:
                    result.charge_reason = ActionReason.DEFICIT_CHARGE_NOW
                    result.charge_description = (
                        f"Projected Deficit at {kitchen_time(slot.ts)}. Charge Now (${charge_now_cost:.3f}) "
                        f"<= Later (${later_cost:.3f}) - Delta (${settings.min_deficit_price_difference_dollars_per_kwh:.3f})."
                    )
                    logger.debug(f"simulator.deficit_charge_now deficit={deficit:.2f} now_cost={charge_now_cost:.3f} "
                                 f"later_cost={later_cost:.3f}")
                    break
                logger.debug(f"simulator.deficit_charge_later deficit={deficit:.2f} now_cost={charge_now_cost:.3f} "
                             f"later_cost={later_cost:.3f}")

            # headroom check: at least a short charge must fit before the battery is full
            energy_after_charge = energy + charge_kw * (MIN_CHARGE_MINUTES / 60.0)
            if (settings.grid_charge_batteries and settings.grid_export_solar
                    and energy_after_charge < capacity and not hit_capacity):
                # importing later means we avoid the import cost, exporting later earns the export value
                if slot.net_load_solar_kwh > 0:
                    value = slot.grid_charge_dollars_per_kwh
                else:
                    value = slot.solar_opp_dollars_per_kwh

                if value - charge_now_cost > settings.min_arbitrage_difference_dollars_per_kwh:
                    result.charge_reason = ActionReason.ARBITRAGE_CHARGE_NOW
                    result.charge_description = (
                        f"Arbitrage Opportunity at {kitchen_time(slot.ts)}. "
                        f"Buy@{charge_now_cost:.3f} -> Sell/Save@{value:.3f}."
                    )
                    logger.debug(f"simulator.arbitrage buy={charge_now_cost:.3f} sell={value:.3f}")
                    break

        return result
