"""Hour-of-day energy model built from historical hourly stats"""

import logging
from datetime import datetime
from typing import Iterator, List, Optional

from .models import HOURS_PER_DAY, EnergyStats, HourProfile, to_local

logger = logging.getLogger(__name__)


class HourlyEnergyModel:
    """Average solar/load profile for each hour of the day (0-23).

    Hours without history are absent; looking one up yields a zero profile.
    """

    def __init__(self, profiles: Optional[List[Optional[HourProfile]]] = None):
        self._profiles: List[Optional[HourProfile]] = list(profiles) if profiles else [None] * HOURS_PER_DAY

    def __getitem__(self, hour: int) -> HourProfile:
        profile = self._profiles[hour]
        return profile if profile is not None else HourProfile(hour)

    def __contains__(self, hour: int) -> bool:
        return 0 <= hour < HOURS_PER_DAY and self._profiles[hour] is not None

    def __len__(self) -> int:
        return sum(1 for p in self._profiles if p is not None)

    def __iter__(self) -> Iterator[HourProfile]:
        return (p for p in self._profiles if p is not None)

    def hours(self) -> List[int]:
        return [p.hour for p in self]


def find_single_outlier(loads: List[float], multiple: float) -> Optional[int]:
    """Index of the only load exceeding the mean of the others by `multiple`.

    Returns None when no point, or more than one point, qualifies.
    """
    outliers = []
    total = sum(loads)
    for i, load in enumerate(loads):
        avg_others = (total - load) / (len(loads) - 1)
        if load > avg_others * multiple:
            outliers.append(i)

    if len(outliers) == 1:
        return outliers[0]
    return None


def build_hourly_energy_model(history: List[EnergyStats], ignore_usage_over_multiple: float,
                              now: Optional[datetime] = None) -> HourlyEnergyModel:
    """Average solar and home load by hour of day.

    When a bucket has 3+ points and ignore_usage_over_multiple > 0, a single
    point whose load is over the others' mean times the multiple is left out.
    """
    now = now or datetime.now()
    buckets: List[List[EnergyStats]] = [[] for _ in range(HOURS_PER_DAY)]
    for stats in history:
        if stats.ts_hour_start is None:
            continue
        buckets[to_local(stats.ts_hour_start, now).hour].append(stats)

    profiles: List[Optional[HourProfile]] = [None] * HOURS_PER_DAY
    for hour, points in enumerate(buckets):
        if not points:
            continue

        valid = points
        if len(points) >= 3 and ignore_usage_over_multiple > 0:
            idx = find_single_outlier([p.home_kwh for p in points], ignore_usage_over_multiple)
            if idx is not None:
                logger.debug(f"energy_model.outlier hour={hour} load={points[idx].home_kwh:.2f} "
                             f"solar={points[idx].solar_kwh:.2f} points={len(points)}")
                valid = points[:idx] + points[idx + 1:]

        count = len(valid)
        profiles[hour] = HourProfile(
            hour=hour,
            avg_solar_kwh=sum(p.solar_kwh for p in valid) / count,
            avg_home_load_kwh=sum(p.home_kwh for p in valid) / count,
        )

    model = HourlyEnergyModel(profiles)
    logger.debug(f"energy_model.build records={len(history)} hours={len(model)}")
    return model
