import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from attack_tree_assist.config import AssistConfig
from attack_tree_assist.core.graph import TreeGraph
from attack_tree_assist.suggest import WOZ_REASON, SuggestEngine
from attack_tree_assist.woz import WozFeed, matching_entries

from conftest import SYNERGY_TEXT

FEED = {
    "scenario": "auth",
    "entries": [
        {"id": "woz_1", "when": {"selected_parent_alias": "reset"},
         "what": {"text": "Intercept Reset Email", "score_boost": 0.4}},
        {"id": "woz_2",
         "what": {"text": "Replay the session cookie", "score_boost": 0.5,
                  "why": ["Cookies outlive", "the password."]}},
        {"id": "woz_3", "what": {"text": "   "}},
        {"id": "woz_4", "what": {"text": "Password Reset Flow", "score_boost": 0.9}},
    ],
}


def test_matching_entries_filters():
    ids = [e["id"] for e in matching_entries(FEED, "auth", "Password Reset Flow")]
    assert ids == ["woz_1", "woz_2", "woz_4"]

    ids = [e["id"] for e in matching_entries(FEED, "auth", "Credential Stuffing")]
    assert ids == ["woz_2", "woz_4"]

    assert matching_entries(FEED, "iot", "Password Reset Flow") == []
    assert matching_entries(None, "auth") == []
    assert matching_entries({"entries": "junk"}, "auth") == []


def test_feed_without_scenario_applies_everywhere():
    feed = {"entries": FEED["entries"][1:2]}
    assert len(matching_entries(feed, "iot")) == 1
    assert len(matching_entries(feed, "")) == 1


def test_from_config_requires_enabled_url():
    assert WozFeed.from_config(AssistConfig().woz) is None
    cfg = AssistConfig.from_dict({"woz": {"enabled": True}})
    assert WozFeed.from_config(cfg.woz) is None

    cfg = AssistConfig.from_dict({"woz": {"enabled": True, "remoteUrl": "http://localhost:9000/feed.json"}})
    feed = WozFeed.from_config(cfg.woz)
    assert feed.url == "http://localhost:9000/feed.json"
    assert feed.poll_ms == 4000
    assert feed.current() is None


def test_poll_failure_keeps_last_feed_and_backs_off():
    responses = [FEED, OSError("connection refused"), ["not", "an", "object"], {"entries": []}]
    events = []

    def fetch(url):
        result = responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    feed = WozFeed("http://feed", poll_ms=1000, max_backoff_ms=1200,
                   on_event=lambda event, **data: events.append((event, data)), fetch=fetch)

    assert feed.poll_once() is True
    assert feed.current() is FEED
    assert feed.backoff_ms == 0

    assert feed.poll_once() is False
    assert feed.backoff_ms == 500
    assert feed.current() is FEED

    assert feed.poll_once() is False
    assert feed.backoff_ms == 1200
    assert 1.0 <= feed.next_delay() <= 1.2

    assert feed.poll_once() is True
    assert feed.backoff_ms == 0
    assert feed.current() == {"entries": []}

    assert [e for e, _ in events] == ["woz_feed", "woz_error", "woz_error", "woz_feed"]
    assert events[0][1] == {"entries": 4}
    assert events[1][1] == {"msg": "connection refused"}


def test_next_delay_is_jittered():
    feed = WozFeed("http://feed", poll_ms=4000, max_backoff_ms=60000)
    delays = {feed.next_delay() for _ in range(20)}
    assert all(4.0 <= d < 4.5 for d in delays)


def test_poll_over_http():
    response = MagicMock()
    response.json.return_value = FEED
    with patch("attack_tree_assist.loader.requests.get", return_value=response) as get:
        feed = WozFeed("http://localhost:9000/feed.json")
        assert feed.poll_once() is True
    assert get.call_args[0][0] == "http://localhost:9000/feed.json"
    assert feed.current()["scenario"] == "auth"

    response.raise_for_status.side_effect = requests.HTTPError("503")
    with patch("attack_tree_assist.loader.requests.get", return_value=response):
        assert feed.poll_once() is False
    assert feed.current()["scenario"] == "auth"


def test_poll_bad_json(tmp_path):
    path = tmp_path / "feed.json"
    path.write_text("{nope", encoding="utf-8")
    feed = WozFeed(str(path))
    assert feed.poll_once() is False

    path.write_text(json.dumps(FEED), encoding="utf-8")
    assert feed.poll_once() is True
    assert len(feed.current()["entries"]) == 4


@pytest.fixture
def woz_engine(index, resolver, config):
    return SuggestEngine(index, resolver, config, feed=lambda: FEED)


def test_feed_boosts_existing_suggestion(woz_engine, scenario, graph_factory):
    graph = graph_factory(["Password Reset Flow"])
    result = woz_engine.suggest(graph, "Password Reset Flow", scenario, limit_top=10)
    top = result.top[0]
    assert top.id == "intercept_reset_email"
    assert top.score == pytest.approx(1.6 + 0.4)
    assert top.reason == f"{SYNERGY_TEXT} (boosted)"
    assert top.source == "parent"


def test_feed_injects_new_suggestion(woz_engine, scenario, graph_factory):
    graph = graph_factory(["Password Reset Flow"])
    result = woz_engine.suggest(graph, "Password Reset Flow", scenario, limit_top=10)
    by_id = {s.id: s for s in result.top + result.more}
    injected = by_id["woz_2"]
    assert injected.source == "woz"
    assert injected.name == "Replay the session cookie"
    assert injected.score == pytest.approx(0.5)
    assert injected.reason == "Cookies outlive the password."
    # already on the canvas
    assert all(s.name != "Password Reset Flow" for s in result.top + result.more)


def test_feed_entry_defaults(index, resolver, scenario):
    config = AssistConfig.from_dict({"matching": {"maxReturned": 50}})
    feed = {"entries": [{"what": {"text": "Bribe the help desk"}}]}
    engine = SuggestEngine(index, resolver, config, feed=lambda: feed)
    result = engine.suggest(TreeGraph(), None, scenario, limit_top=50)
    injected = [s for s in result.top if s.source == "woz"]
    assert len(injected) == 1
    assert injected[0].id.startswith("woz:")
    assert injected[0].reason == WOZ_REASON
    assert injected[0].score == pytest.approx(0.3)


def test_feed_result_is_capped(index, resolver, scenario):
    config = AssistConfig.from_dict({"matching": {"maxReturned": 2}})
    engine = SuggestEngine(index, resolver, config, feed=lambda: FEED)
    result = engine.suggest(TreeGraph(), None, scenario, limit_top=10, limit_more=10)
    assert len(result.top) + len(result.more) == 2


def test_no_feed_document_changes_nothing(index, resolver, config, scenario, graph_factory):
    graph = graph_factory(["Password Reset Flow"])
    plain = SuggestEngine(index, resolver, config).suggest(graph, "Password Reset Flow", scenario)
    empty = SuggestEngine(index, resolver, config, feed=lambda: None).suggest(graph, "Password Reset Flow", scenario)
    assert empty.to_dict() == plain.to_dict()
