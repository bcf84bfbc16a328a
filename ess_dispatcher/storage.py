"""JSON-file storage for energy history and the action log"""

import json
import logging
import os
from dataclasses import asdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from .models import Action, EnergyStats

logger = logging.getLogger(__name__)

HISTORY_RETENTION_DAYS = 14


def default_data_dir() -> Path:
    """/tmp in Lambda (ephemeral but works within invocation), logs/ locally"""
    if os.environ.get('AWS_LAMBDA_FUNCTION_NAME') is not None:
        return Path('/tmp')
    return Path('logs')


def stats_to_dict(stats: EnergyStats) -> Dict:
    data = asdict(stats)
    data['ts_hour_start'] = stats.ts_hour_start.isoformat()
    return data


def stats_from_dict(data: Dict) -> EnergyStats:
    data = dict(data)
    data['ts_hour_start'] = datetime.fromisoformat(data['ts_hour_start'])
    return EnergyStats(**data)


class Storage:
    """Persists what the dispatcher needs between invocations"""

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = data_dir or default_data_dir()
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._history_file = self.data_dir / 'energy_history.json'
        self._actions_file = self.data_dir / 'actions.jsonl'

    def _load_json(self, path: Path) -> Dict:
        if not path.exists():
            return {}
        try:
            with open(path, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load {path}: {e}")
            return {}

    def _save_json(self, path: Path, data: Dict) -> None:
        try:
            with open(path, 'w') as f:
                json.dump(data, f)
        except IOError as e:
            logger.warning(f"Failed to save {path}: {e}")

    def upsert_energy_history(self, history: List[EnergyStats], now: Optional[datetime] = None) -> None:
        """Insert or replace hourly stats, dropping hours past retention"""
        records = self._load_json(self._history_file)
        for stats in history:
            if stats.ts_hour_start is None:
                continue
            records[stats.ts_hour_start.isoformat()] = stats_to_dict(stats)

        cutoff = (now or datetime.now()) - timedelta(days=HISTORY_RETENTION_DAYS)
        stale = [key for key in records if datetime.fromisoformat(key) < cutoff]
        for key in stale:
            del records[key]

        self._save_json(self._history_file, records)
        logger.debug(f"storage.upsert_energy_history upserted={len(history)} removed={len(stale)} total={len(records)}")

    def get_energy_history(self, start: datetime, end: datetime) -> List[EnergyStats]:
        """Stored hours with start <= hour < end, oldest first"""
        records = self._load_json(self._history_file)
        history = [stats_from_dict(data) for data in records.values()]
        history = [s for s in history if start <= s.ts_hour_start < end]
        return sorted(history, key=lambda s: s.ts_hour_start)

    def get_latest_energy_history_time(self) -> Optional[datetime]:
        records = self._load_json(self._history_file)
        if not records:
            return None
        return max(datetime.fromisoformat(key) for key in records)

    def insert_action(self, action: Action) -> None:
        try:
            with open(self._actions_file, 'a') as f:
                f.write(json.dumps(action.to_dict()) + '\n')
        except IOError as e:
            logger.warning(f"Failed to log action: {e}")

    def get_actions(self) -> List[Dict]:
        if not self._actions_file.exists():
            return []
        with open(self._actions_file, 'r') as f:
            return [json.loads(line) for line in f if line.strip()]

