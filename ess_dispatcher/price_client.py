"""Day-ahead electricity prices from OTE, reshaped into hourly Price records"""

import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from ote_cr_price_fetcher import PriceFetcher

from .models import Price, truncate_hour
from .price_cache import PriceCache

logger = logging.getLogger(__name__)

PROVIDER = "ote"
SLOTS_PER_HOUR = 4
KWH_PER_MWH = 1000


class PriceClient:
    """Fetches 15-minute OTE prices (EUR/MWh) and serves hourly prices per kWh"""

    def __init__(self, price_multiplier: float = 1.0, grid_fee_per_kwh: float = 0.0,
                 price_cache: Optional[PriceCache] = None):
        self.price_multiplier = price_multiplier
        self.grid_fee_per_kwh = grid_fee_per_kwh
        self.price_fetcher = PriceFetcher()
        self.price_cache = price_cache or PriceCache()

    async def get_slot_prices(self, day: date) -> Optional[List[float]]:
        """Get 15-minute prices for a day (cached for today/tomorrow)"""
        cached = self.price_cache.get(day)
        if cached is not None:
            return cached

        try:
            prices_list = await self.price_fetcher.fetch_prices_for_date(day, hourly=False)
        except Exception as e:
            logger.error(f"Failed to get prices for {day}: {e}")
            return None

        if not prices_list or len(prices_list) % SLOTS_PER_HOUR:
            logger.error(f"Invalid price data for {day}: got {len(prices_list) if prices_list else 0} values")
            return None

        self.price_cache.set(day, prices_list)
        return prices_list

    def to_hourly(self, day: date, slot_prices: List[float]) -> List[Price]:
        """Average each hour's slots and convert EUR/MWh to EUR/kWh"""
        midnight = datetime.combine(day, time())
        prices = []
        for hour in range(len(slot_prices) // SLOTS_PER_HOUR):
            slots = slot_prices[hour * SLOTS_PER_HOUR:(hour + 1) * SLOTS_PER_HOUR]
            avg_mwh = sum(slots) / len(slots)
            start = midnight + timedelta(hours=hour)
            prices.append(Price(
                ts_start=start,
                ts_end=start + timedelta(hours=1),
                dollars_per_kwh=avg_mwh / KWH_PER_MWH * self.price_multiplier,
                grid_addl_dollars_per_kwh=self.grid_fee_per_kwh,
                provider=PROVIDER,
            ))
        return prices

    async def get_hourly_prices(self, day: date) -> Optional[List[Price]]:
        slot_prices = await self.get_slot_prices(day)
        if slot_prices is None:
            return None
        return self.to_hourly(day, slot_prices)

    async def get_current_price(self, now: Optional[datetime] = None) -> Optional[Price]:
        """Price for the hour containing now"""
        now = now or datetime.now()
        prices = await self.get_hourly_prices(now.date())
        if prices is None:
            return None
        hour = truncate_hour(now)
        for price in prices:
            if price.ts_start == hour:
                logger.info(f"💶 Current price: {price.dollars_per_kwh:.3f}/kWh (+{price.grid_addl_dollars_per_kwh:.3f} grid)")
                return price
        logger.error(f"No price published for {hour:%Y-%m-%d %H:%M}")
        return None

    async def get_future_prices(self, now: Optional[datetime] = None) -> Optional[List[Price]]:
        """Every known hour after the current one, today and tomorrow"""
        now = now or datetime.now()
        today = await self.get_hourly_prices(now.date())
        if today is None:
            return None

        tomorrow = await self.get_hourly_prices(now.date() + timedelta(days=1))
        if tomorrow is None:
            logger.warning(f"Prices for {now.date() + timedelta(days=1)} not published yet")
            tomorrow = []

        hour = truncate_hour(now)
        future = [p for p in today + tomorrow if p.ts_start > hour]
        logger.debug(f"price_client.get_future_prices hours={len(future)}")
        return future
