"""Same-day solar trend relative to the hourly model"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .energy_model import HourlyEnergyModel
from .models import EnergyStats, to_local

logger = logging.getLogger(__name__)

# Deviation from the model below which today's solar is treated as normal
TREND_THRESHOLD = 0.10
# Upper bound on the adjustment ratio
MAX_TREND_RATIO = 3.0


def calculate_solar_trend(history: List[EnergyStats], model: HourlyEnergyModel,
                          now: Optional[datetime] = None) -> float:
    """Ratio of actual to modeled solar over the last two recorded hours of today.

    Returns 1.0 when there is not enough same-day data, when the model expects
    no sun for those hours, or when actual is within 10% of the model.
    """
    if len(history) < 2:
        return 1.0

    now = now or datetime.now()
    by_time: Dict[datetime, EnergyStats] = {}
    latest: Optional[datetime] = None
    for stats in history:
        if stats.ts_hour_start is None:
            continue
        ts = to_local(stats.ts_hour_start, now)
        by_time[ts] = stats
        if ts.date() == now.date() and (latest is None or ts > latest):
            latest = ts

    if latest is None:
        logger.debug(f"solar_trend.no_recent_data now={now:%Y-%m-%d %H:%M} records={len(history)}")
        return 1.0

    t1 = latest
    t2 = t1 - timedelta(hours=1)
    if t2 not in by_time:
        logger.debug(f"solar_trend.not_enough_data t1={t1:%H:%M} t2={t2:%H:%M}")
        return 1.0

    actual = by_time[t1].solar_kwh + by_time[t2].solar_kwh
    expected = model[t1.hour].avg_solar_kwh + model[t2.hour].avg_solar_kwh

    # TODO: a sunny day following a cloudy one still reads as "no sun expected" here
    if expected < 0.001:
        logger.debug(f"solar_trend.model_expects_no_solar t1={t1:%H:%M} t2={t2:%H:%M} expected={expected:.3f}")
        return 1.0

    if abs(actual - expected) / expected > TREND_THRESHOLD:
        ratio = min(MAX_TREND_RATIO, actual / expected)
        logger.debug(f"solar_trend.adjusted actual={actual:.2f} expected={expected:.2f} ratio={ratio:.2f}")
        return ratio

    return 1.0
