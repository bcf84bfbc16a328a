"""Price caching for today and tomorrow"""

import json
import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from .storage import default_data_dir

logger = logging.getLogger(__name__)


class PriceCache:
    """Keeps fetched day-ahead slot prices on disk, only for today and tomorrow"""

    def __init__(self, data_dir: Optional[Path] = None):
        data_dir = data_dir or default_data_dir()
        data_dir.mkdir(parents=True, exist_ok=True)
        self._price_cache_file = data_dir / 'price_cache.json'

    def load(self) -> Dict[str, List[float]]:
        """Load price cache from disk"""
        if not self._price_cache_file.exists():
            return {}
        try:
            with open(self._price_cache_file, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load price cache: {e}")
            return {}

    def save(self, cache: Dict[str, List[float]]) -> None:
        """Save price cache to disk"""
        try:
            with open(self._price_cache_file, 'w') as f:
                json.dump(cache, f)
        except IOError as e:
            logger.warning(f"Failed to save price cache: {e}")

    @staticmethod
    def valid_dates() -> set:
        today = datetime.now().date()
        return {str(today), str(today + timedelta(days=1))}

    def cleanup(self, cache: Dict[str, List[float]]) -> Dict[str, List[float]]:
        """Remove stale entries from price cache, keeping only today and tomorrow"""
        valid_dates = self.valid_dates()
        stale_dates = [d for d in cache if d not in valid_dates]
        for d in stale_dates:
            del cache[d]
            logger.debug(f"Removed stale price cache entry for {d}")
        return cache

    def get(self, day: date) -> Optional[List[float]]:
        """Get cached slot prices for a date"""
        cache = self.cleanup(self.load())
        prices = cache.get(str(day))
        if prices is not None:
            logger.debug(f"price_cache.get cached=true date={day}")
        return prices

    def set(self, day: date, slot_prices: List[float]) -> None:
        """Cache slot prices for a date (only if today or tomorrow)"""
        if str(day) not in self.valid_dates():
            logger.debug(f"price_cache.set cached=false date={day} reason=outside_window")
            return
        cache = self.cleanup(self.load())
        cache[str(day)] = list(slot_prices)
        self.save(cache)
        logger.debug(f"price_cache.set cached=true date={day} slots={len(slot_prices)}")
