"""Dispatch policy settings and their versioned migration"""

import logging
from dataclasses import asdict, dataclass, fields, replace
from typing import Dict, Tuple

logger = logging.getLogger(__name__)

# Bump when a new field needs a default filled in for existing installs
CURRENT_SETTINGS_VERSION = 2


@dataclass(frozen=True)
class Settings:
    """Tunable policy supplied to every decision. Prices are in currency/kWh."""
    dry_run: bool = False
    pause: bool = False

    # Ignore an hour's usage when it exceeds the other days' average by this multiple
    ignore_hour_usage_over_multiple: float = 0.0

    always_charge_under_dollars_per_kwh: float = 0.0
    additional_fees_dollars_per_kwh: float = 0.0
    min_arbitrage_difference_dollars_per_kwh: float = 0.0
    min_deficit_price_difference_dollars_per_kwh: float = 0.0

    min_battery_soc: float = 0.0

    grid_charge_batteries: bool = False
    grid_export_solar: bool = False

    @classmethod
    def from_dict(cls, data: Dict) -> "Settings":
        """Build settings from a config mapping, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        unknown = [key for key in data if key not in known]
        if unknown:
            logger.warning(f"Ignoring unknown settings: {unknown}")
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> Dict:
        return asdict(self)


def migrate_settings(settings: Settings, current_version: int) -> Tuple[Settings, bool]:
    """Fill defaults for every version after current_version.

    Returns the migrated settings and whether anything changed.
    """
    if current_version >= CURRENT_SETTINGS_VERSION:
        return settings, False

    changes = {}
    for version in range(current_version + 1, CURRENT_SETTINGS_VERSION + 1):
        if version == 1:
            if settings.ignore_hour_usage_over_multiple == 0:
                changes['ignore_hour_usage_over_multiple'] = 2.0
            if settings.always_charge_under_dollars_per_kwh == 0:
                changes['always_charge_under_dollars_per_kwh'] = 0.05
            if settings.min_arbitrage_difference_dollars_per_kwh == 0:
                changes['min_arbitrage_difference_dollars_per_kwh'] = 0.03
            if settings.min_battery_soc == 0:
                changes['min_battery_soc'] = 20.0
            # grid charging and export are never assumed
        elif version == 2:
            if settings.min_deficit_price_difference_dollars_per_kwh == 0:
                changes['min_deficit_price_difference_dollars_per_kwh'] = 0.02
        else:
            raise ValueError(f"unknown settings version: {version}")

    if changes:
        logger.debug(f"settings.migrate from_version={current_version} to_version={CURRENT_SETTINGS_VERSION} "
                     f"changed={sorted(changes)}")
    return replace(settings, **changes), bool(changes)
