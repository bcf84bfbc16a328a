#!/usr/bin/env python3
"""
ESS Dispatcher

Decides once per invocation what the battery and solar inverter should do for
the next interval, from live telemetry, day-ahead prices and recent energy history.
Meant to be run on a schedule (cron, EventBridge) every few minutes.
"""

import argparse
import asyncio
import logging
import os
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from .config import Config
from .controller import Controller
from .ess_client import ESSClient
from .models import Action, ActionReason, BatteryMode, SimHour, SolarMode, truncate_hour
from .price_client import PriceClient
from .settings import CURRENT_SETTINGS_VERSION, Settings, migrate_settings
from .storage import Storage

logger = logging.getLogger(__name__)

# History window handed to the decision engine
CONTROL_HISTORY_HOURS = 72


def configure_logging(verbose: bool = False) -> None:
    """Lambda uses CloudWatch via stdout, local uses file + stdout"""
    if logging.getLogger().handlers:
        return
    handlers = [logging.StreamHandler()]
    if os.environ.get('AWS_LAMBDA_FUNCTION_NAME') is None:
        Path('logs').mkdir(exist_ok=True)
        handlers.append(logging.FileHandler('logs/ess_dispatcher.log'))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


class Dispatcher:
    """Wires the device, price source and storage around the decision engine"""

    def __init__(self, config_path: str = "config.yaml"):
        self.config = Config(config_path)

        self.ess_client = ESSClient(
            self.config['app_id'],
            self.config['app_secret'],
            self.config['serial_number'],
            int(self.config.get('min_soc', 10)),
            int(self.config.get('max_soc', 100)),
            float(self.config['charge_rate_kw']),
            float(self.config.get('discharge_rate_kw', 0.0)),
        )

        self.price_client = PriceClient(
            price_multiplier=float(self.config.get('price_multiplier', 1.0)),
            grid_fee_per_kwh=float(self.config.get('grid_fee_per_kwh', 0.0)),
        )

        self.storage = Storage()
        self.controller = Controller()
        self.history_days = int(self.config.get('history_days', 5))

        logger.info("ESS Dispatcher initialized")

    def load_settings(self) -> Settings:
        settings, migrated = migrate_settings(self.config.settings(), self.config.settings_version)
        if migrated:
            logger.info(f"Filled default settings up to version {CURRENT_SETTINGS_VERSION}; set "
                        f"settings_version: {CURRENT_SETTINGS_VERSION} in {self.config.config_path} to pin them")
        return settings

    async def sync_energy_history(self, now: datetime) -> None:
        """Pull hourly history from the device, resuming from the last stored hour"""
        window_start = (now - timedelta(days=self.history_days)).replace(hour=0, minute=0, second=0, microsecond=0)
        sync_start = window_start
        latest = self.storage.get_latest_energy_history_time()
        if latest is not None and latest > window_start:
            # the last stored hour may have been incomplete
            sync_start = truncate_hour(latest)

        logger.debug(f"dispatcher.sync_energy_history since={sync_start:%Y-%m-%d %H:%M}")
        start = sync_start
        while start < now:
            end = min(start + timedelta(days=1), now)
            history = await self.ess_client.get_energy_history(start, end)
            if history is None:
                logger.warning(f"Skipping energy history {start:%Y-%m-%d %H:%M} - {end:%Y-%m-%d %H:%M}")
            else:
                self.storage.upsert_energy_history(history, now)
            start = end

    def fault_action(self, now: datetime, status, reason: ActionReason, description: str) -> Action:
        action = Action(
            timestamp=now,
            battery_mode=BatteryMode.NO_CHANGE,
            solar_mode=SolarMode.NO_CHANGE,
            reason=reason,
            description=description,
            system_status=status,
            fault=True,
        )
        self.storage.insert_action(action)
        return action

    async def update(self, dry_run: bool = False, now: Optional[datetime] = None) -> Optional[Action]:
        """Run one decision cycle. Returns the logged action, or None when nothing was decided."""
        now = now or datetime.now()
        logger.info(f"{'=' * 50}")
        logger.info(f"⚡ Dispatch update at {now:%Y-%m-%d %H:%M}" + (" [DRY RUN]" if dry_run else ""))
        logger.info(f"{'=' * 50}")

        settings = self.load_settings()
        self.ess_client.apply_settings(settings)

        await self.sync_energy_history(now)

        if settings.pause:
            logger.info("⏸️  Updates paused in settings")
            return None

        status = await self.ess_client.get_status()
        if status is None:
            logger.error("Cannot proceed without system status")
            return None

        if status.alarms:
            logger.info(f"Alarms present: {[a.name for a in status.alarms]}")
            self.fault_action(now, status, ActionReason.HAS_ALARMS, f"{len(status.alarms)} alarms present")
            return None

        current_price = await self.price_client.get_current_price(now)
        if current_price is None:
            logger.error("Cannot proceed without current price")
            return None

        future_prices = await self.price_client.get_future_prices(now)
        if future_prices is None:
            logger.warning("Future prices unavailable - deciding on current price only")
            future_prices = []

        history = self.storage.get_energy_history(now - timedelta(hours=CONTROL_HISTORY_HOURS), now)

        decision = self.controller.decide(status, current_price, future_prices, history, settings, now)
        action = replace(decision.action)
        logger.info(f"Decision: {decision.explanation} | battery={action.battery_mode.name} "
                    f"(target {action.target_battery_mode.name}) solar={action.solar_mode.name} "
                    f"(target {action.target_solar_mode.name})")
        logger.info(f"  {action.description}")

        if dry_run or settings.dry_run:
            action.dry_run = True
            logger.info(f"[DRY RUN] Would set battery={action.battery_mode.name} solar={action.solar_mode.name}")
        elif action.battery_mode != BatteryMode.NO_CHANGE or action.solar_mode != SolarMode.NO_CHANGE:
            ok = await self.ess_client.set_modes(action.battery_mode, action.solar_mode, status.battery_soc)
            if not ok:
                logger.error(f"✗ Failed to set battery={action.battery_mode.name} solar={action.solar_mode.name}")
                action.failed = True
                action.error = "failed to set modes"
                action.description += f" (FAILED: {action.error})"
        else:
            logger.info("✓ System already in the desired state")

        self.storage.insert_action(action)
        return action

    async def simulate(self, now: Optional[datetime] = None) -> List[SimHour]:
        """Simulated 24-hour timeline for the current inputs, without acting on it"""
        now = now or datetime.now()
        settings = self.load_settings()
        self.ess_client.apply_settings(settings)

        status = await self.ess_client.get_status()
        current_price = await self.price_client.get_current_price(now)
        if status is None or current_price is None:
            logger.error("Cannot simulate without system status and current price")
            return []

        future_prices = await self.price_client.get_future_prices(now) or []
        history = self.storage.get_energy_history(now - timedelta(hours=CONTROL_HISTORY_HOURS), now)
        return self.controller.simulate(status, current_price, future_prices, history, settings, now)

    async def run_once(self, dry_run: bool = False, simulate: bool = False):
        """Run one update (or print a simulation), always closing the API client"""
        try:
            if simulate:
                hours = await self.simulate()
                for hour in hours:
                    print(repr(hour))
                return
            action = await self.update(dry_run=dry_run)
            if action is None:
                logger.info("✗ No action taken")
            else:
                logger.info("✓ Update completed" if not action.failed else "✗ Update failed")
        finally:
            await self.ess_client.close()


async def main():
    parser = argparse.ArgumentParser(
        description="ESS Dispatcher - decides battery and solar modes from prices, telemetry and history"
    )
    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Path to the YAML config file (default: config.yaml)."
    )
    parser.add_argument(
        "--dry-run",
        "-d",
        action="store_true",
        help="Decide and log without sending commands to the battery."
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Print the simulated 24-hour energy timeline and exit."
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging."
    )

    args = parser.parse_args()
    configure_logging(args.verbose)
    dispatcher = Dispatcher(args.config)
    await dispatcher.run_once(dry_run=args.dry_run, simulate=args.simulate)


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
