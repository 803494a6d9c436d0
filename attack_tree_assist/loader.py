"""
Data loading for the knowledge base, scenarios and study config.

Sources may be filesystem paths or http(s) URLs. Loading never blocks the
session: every failure is logged as a warning and replaced by an empty KB,
a generic scenario or the default configuration.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import requests

from .config import AssistConfig, load_config as config_from_dict
from .kb import KBEntry
from .scenario import Scenario

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 10

Source = Union[str, Path]


def _is_url(source: Source) -> bool:
    return isinstance(source, str) and source.lower().startswith(('http://', 'https://'))


def load_json(source: Source, timeout: float = HTTP_TIMEOUT) -> Any:
    """
    Read a JSON document from a path or URL.

    Raises:
        OSError, ValueError, requests.RequestException on failure
    """
    if _is_url(source):
        response = requests.get(source, timeout=timeout, headers={'Cache-Control': 'no-store'})
        response.raise_for_status()
        return response.json()
    with open(Path(source), 'r', encoding='utf-8') as f:
        return json.load(f)


def load_kb(source: Optional[Source]) -> List[KBEntry]:
    """
    Load KB entries from a bare array or ``{"patterns": [...]}``.

    Entries without an ``id`` are skipped. Any failure yields ``[]``.
    """
    if not source:
        return []
    try:
        data = load_json(source)
    except (OSError, ValueError, requests.RequestException) as e:
        logger.warning("KB load failed (%s): %s", source, e)
        return []

    raw = data.get('patterns', []) if isinstance(data, dict) else data
    if not isinstance(raw, list):
        logger.warning("KB load failed (%s): expected a list of entries", source)
        return []

    entries = []
    skipped = 0
    for item in raw:
        if not isinstance(item, dict) or not str(item.get('id') or '').strip():
            skipped += 1
            continue
        entries.append(KBEntry.from_dict(item))
    if skipped:
        logger.warning("KB %s: skipped %d entries without an id", source, skipped)
    logger.info("KB loaded: %d entries from %s", len(entries), source)
    return entries


def default_scenario(scenario_id: Optional[str] = None) -> Scenario:
    """Generic scenario used when nothing could be loaded."""
    return Scenario(id=scenario_id or '')


def scenario_from_data(data: Any, scenario_id: Optional[str] = None) -> Scenario:
    """
    Pick a scenario out of a single scenario object or a ``{id: scenario}`` map.
    """
    if not isinstance(data, dict):
        return default_scenario(scenario_id)
    if 'goal' in data or 'gold_must_have' in data:
        return Scenario.from_dict(data, scenario_id or '')
    if scenario_id and isinstance(data.get(scenario_id), dict):
        return Scenario.from_dict(data[scenario_id], scenario_id)
    logger.warning("Scenario %r not found in scenario file", scenario_id)
    return default_scenario(scenario_id)


def load_scenario(source: Optional[Source], scenario_id: Optional[str] = None) -> Scenario:
    """Load a scenario; any failure yields a generic scenario."""
    if not source:
        return default_scenario(scenario_id)
    try:
        data = load_json(source)
    except (OSError, ValueError, requests.RequestException) as e:
        logger.warning("Scenario load failed (%s): %s", source, e)
        return default_scenario(scenario_id)
    return scenario_from_data(data, scenario_id)


def load_config(source: Optional[Source]) -> AssistConfig:
    """Load ``config.json``; any failure yields the defaults."""
    if not source:
        return config_from_dict(None)
    try:
        data = load_json(source)
    except (OSError, ValueError, requests.RequestException) as e:
        logger.warning("Config load failed (%s): %s", source, e)
        return config_from_dict(None)
    if not isinstance(data, dict):
        logger.warning("Config load failed (%s): expected an object", source)
        return config_from_dict(None)
    try:
        return config_from_dict(data)
    except (TypeError, ValueError, KeyError) as e:
        logger.warning("Config invalid (%s): %s", source, e)
        return config_from_dict(None)
