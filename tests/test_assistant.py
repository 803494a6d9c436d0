import json
import logging

from attack_tree_assist.assistant import AttackTreeAssistant
from attack_tree_assist.core.graph import TreeGraph

from conftest import KB_DATA, SCENARIO_DATA, make_graph


def events(caplog, name):
    return [r for r in caplog.records
            if r.name == "attack_tree_assist.events" and getattr(r, "event", None) == name]


def test_session_started_event(caplog, scenario):
    with caplog.at_level(logging.INFO, logger="attack_tree_assist.events"):
        AttackTreeAssistant(KB_DATA, None, scenario)
    started = events(caplog, "session_started")
    assert len(started) == 1
    assert started[0].data == {"scenario": "auth", "kb_size": 12, "semantic": False}


def test_scenario_dict_is_accepted():
    assistant = AttackTreeAssistant(KB_DATA, {"suggest": {"topK": 1}}, SCENARIO_DATA)
    assert assistant.scenario.goal == "Take over a user account"
    assert assistant.config.suggest["top_k"] == 1


def test_accept_under_parent_logs_event(assistant, caplog):
    graph = make_graph(["Password Reset Flow"])
    with caplog.at_level(logging.INFO, logger="attack_tree_assist.events"):
        result = assistant.accept(graph, {"id": "intercept_reset_email", "name": "Intercept Reset Email"},
                                  "Password Reset Flow")
    assert result.parent_id == "n0"
    added = events(caplog, "node_added_from_suggest")
    assert [r.data for r in added] == [{"name": "Intercept Reset Email", "parent": "Password Reset Flow"}]


def test_accept_on_empty_canvas_plants_root(assistant, caplog):
    graph = TreeGraph()
    with caplog.at_level(logging.INFO, logger="attack_tree_assist.events"):
        result = assistant.accept(graph, "Password Reset Flow")
    assert result.as_root
    added = events(caplog, "node_added_from_suggest")
    assert added[0].data == {"name": "Password Reset Flow", "parent": None, "as": "root"}
    assert [r.data["parent"] for r in added[1:]] == ["Password Reset Flow"] * len(result.children)
    assert len(graph.nodes) == 1 + len(result.children)


def test_suggest_logs_shown_ids(assistant, caplog):
    graph = make_graph(["Take over a user account"])
    with caplog.at_level(logging.INFO, logger="attack_tree_assist.events"):
        result = assistant.suggest(graph.to_dict())
    shown = events(caplog, "suggest_shown")[0]
    assert shown.data["top"] == [s.id for s in result.top]
    assert json.loads(shown.getMessage().split(" ", 1)[1])["parent"] is None


def test_keep_suppresses_flag(assistant, caplog):
    graph = make_graph(["Take over a user account", "Dumpster Diving"], [(0, 1)])
    assert any(f.label == "Dumpster Diving" for f in assistant.prune(graph))
    with caplog.at_level(logging.INFO, logger="attack_tree_assist.events"):
        assistant.keep("  DUMPSTER diving ")
    assert events(caplog, "prune_keep")[0].data == {"label": "  DUMPSTER diving "}
    assert not any(f.label == "Dumpster Diving" for f in assistant.prune(graph))


def test_register_scenario_goal_sets_goal_only(assistant):
    scenario = assistant.register_scenario_goal("  Own the mailbox ")
    assert scenario.goal == "Own the mailbox"
    assert scenario.id == "auth"
    assert scenario.gold_must_have == SCENARIO_DATA["gold_must_have"]


def test_register_scenario_goal_replaces_scenario(assistant):
    assistant.add_scenario_aliases({"zebra crossing": "Credential Stuffing"})
    assert assistant.resolve("zebra crossing").method == "scenario_alias"

    scenario = assistant.register_scenario_goal(None, {"id": "iot", "goal": "Watch the camera"})
    assert scenario.id == "iot"
    assert assistant.scenario is scenario
    res = assistant.resolve("zebra crossing")
    assert res is None or res.method != "scenario_alias"


def test_add_scenario_aliases_feeds_resolver(assistant):
    added = assistant.add_scenario_aliases({"fake login page": "Phishing Credentials"})
    assert added == 1
    res = assistant.resolve("Fake Login Page")
    assert res.id == "phishing_credentials"
    assert res.method == "scenario_alias"
    assert "fake login page" in assistant.scenario.aliases["Phishing Credentials"]


def test_explain_logs_view(assistant, caplog):
    with caplog.at_level(logging.INFO, logger="attack_tree_assist.events"):
        explanation = assistant.explain("Take over a user account")
    assert explanation.title == "Goal: Take over a user account"
    assert explanation.severity == "info"
    assert events(caplog, "explain_view")[0].data["label"] == "Take over a user account"


def test_semantic_client_only_when_enabled():
    enabled = AttackTreeAssistant(KB_DATA, {"matching": {"semantic": {"enabled": True, "timeout": 5}}})
    try:
        assert enabled.oracle_client is not None
        assert enabled.oracle_client.query("credential stuffing", 1)[0]["id"] == "credential_stuffing"
    finally:
        enabled.close()
    assert AttackTreeAssistant([], {"matching": {"semantic": {"enabled": True}}}).oracle_client is None


def test_from_sources_degrades(tmp_path):
    assistant = AttackTreeAssistant.from_sources(str(tmp_path / "kb.json"), None, None)
    assert len(assistant.index) == 0
    assert assistant.scenario.id == "auth"
    assert assistant.suggest(None).top == []


def test_keep_gate_by_element_id(assistant, caplog):
    with caplog.at_level(logging.INFO, logger="attack_tree_assist.events"):
        assistant.keep(element_id="g7")
    assert assistant.kept.element_ids() == ["g7"]
    assert assistant.kept.to_list() == []
    assert events(caplog, "prune_keep")[0].data == {"label": None, "element_id": "g7"}
