"""
Wizard-of-Oz suggestion feed.

During a study session the facilitator publishes hand-picked suggestions as
a JSON document at ``woz.remote_url``:

    {
      "scenario": "auth",
      "entries": [
        {"id": "woz_1",
         "when": {"selected_parent_alias": "reset"},
         "what": {"text": "Intercept Reset Email", "score_boost": 0.4,
                  "why": "Whoever reads the reset mail wins."}}
      ]
    }

WozFeed polls the document in the background (jittered, with exponential
backoff after failures). The suggest engine folds the matching entries into
its ranking.
"""

import logging
import random
import threading
from typing import Any, Callable, Dict, List, Optional

import requests

from .loader import load_json

logger = logging.getLogger(__name__)


def matching_entries(feed: Optional[Dict[str, Any]], scenario_id: Optional[str] = None,
                     parent_label: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Feed entries that apply to the current scenario and selected parent.

    A feed tagged with another scenario contributes nothing. An entry with
    ``when.selected_parent_alias`` only applies when that text occurs in the
    selected parent label (case-insensitive). Entries without ``what.text``
    are ignored.
    """
    if not isinstance(feed, dict):
        return []
    feed_scenario = feed.get('scenario')
    if feed_scenario and scenario_id and feed_scenario != scenario_id:
        return []

    selected = (parent_label or '').lower()
    result = []
    for entry in feed.get('entries') or []:
        if not isinstance(entry, dict):
            continue
        want = str((entry.get('when') or {}).get('selected_parent_alias') or '').lower()
        if want and want not in selected:
            continue
        what = entry.get('what')
        if not isinstance(what, dict) or not str(what.get('text') or '').strip():
            continue
        result.append(entry)
    return result


class WozFeed:
    """Background poller holding the latest feed document."""

    def __init__(self, url: str, poll_ms: int = 4000, max_backoff_ms: int = 60000,
                 on_event: Optional[Callable[..., None]] = None,
                 fetch: Callable[[str], Any] = load_json):
        self.url = url
        self.poll_ms = poll_ms
        self.max_backoff_ms = max_backoff_ms
        self.backoff_ms = 0
        self._on_event = on_event
        self._fetch = fetch
        self._feed: Optional[Dict[str, Any]] = None
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._stopped = False

    @classmethod
    def from_config(cls, woz: Dict[str, Any], on_event=None) -> Optional['WozFeed']:
        """A feed for an enabled ``woz`` config section, else None."""
        if not woz.get('enabled') or not woz.get('remote_url'):
            return None
        return cls(woz['remote_url'], woz['poll_ms'], woz['max_backoff_ms'], on_event)

    def current(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._feed

    def _emit(self, event: str, **data) -> None:
        if self._on_event is not None:
            self._on_event(event, **data)

    def poll_once(self) -> bool:
        """Fetch the feed once; on failure keep the last good copy and back off."""
        try:
            data = self._fetch(self.url)
            if not isinstance(data, dict):
                raise ValueError("feed must be a JSON object")
        except (OSError, ValueError, requests.RequestException) as e:
            self.backoff_ms = min(self.backoff_ms * 2 + 500, self.max_backoff_ms)
            logger.warning("WoZ feed poll failed (%s): %s", self.url, e)
            self._emit('woz_error', msg=str(e))
            return False

        with self._lock:
            self._feed = data
        self.backoff_ms = 0
        self._emit('woz_feed', entries=len(data.get('entries') or []))
        return True

    def next_delay(self) -> float:
        """Seconds until the next poll."""
        delay_ms = self.poll_ms + self.backoff_ms + random.randint(0, 499)
        return min(delay_ms, self.max_backoff_ms) / 1000.0

    def start(self) -> None:
        self._stopped = False
        self._schedule(0)

    def _schedule(self, delay: float) -> None:
        if self._stopped:
            return
        self._timer = threading.Timer(delay, self._run)
        self._timer.daemon = True
        self._timer.start()

    def _run(self) -> None:
        try:
            self.poll_once()
        finally:
            self._schedule(self.next_delay())

    def stop(self) -> None:
        self._stopped = True
        if self._timer is not None:
            self._timer.cancel()
