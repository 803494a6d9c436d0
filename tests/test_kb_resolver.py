import logging

from attack_tree_assist.kb import KBEntry, build_index, severity_weight
from attack_tree_assist.resolver import NO_EXPLANATION, NO_NARRATIVE, Resolver
from attack_tree_assist.scenario import Scenario, phrase_ids

from conftest import KB_DATA


def test_entry_defaults_for_missing_fields():
    entry = KBEntry.from_dict({"id": "x"})
    assert entry.name == "x"
    assert entry.aliases == []
    assert entry.severity == "unknown"
    assert entry.children == []
    assert severity_weight(entry.severity) == 0.4


def test_unrecognized_severity_weighs_as_unknown():
    entry = KBEntry.from_dict({"id": "x", "severity": "CRITICAL"})
    assert entry.severity == "unknown"
    assert severity_weight("high") == 0.7
    assert severity_weight(None) == 0.4


def test_children_accept_ids_and_objects(index):
    entry = index.get("password_reset_flow")
    assert entry.children == ["intercept_reset_email", "guess_security_questions"]


def test_resolver_exactness(resolver):
    for raw in KB_DATA:
        by_id = resolver.resolve(raw["id"])
        assert by_id.id == raw["id"]
        assert by_id.method == "id"
        by_name = resolver.resolve(raw["name"])
        assert by_name.id == raw["id"]
        assert by_name.score == 1.0


def test_resolver_alias_and_canonical(resolver):
    res = resolver.resolve("Read the reset emails")
    assert res.id == "intercept_reset_email"
    assert res.method == "alias"
    assert resolver.resolve("password-reset FLOW").method == "canon"


def test_resolver_fuzzy_has_no_floor(resolver):
    res = resolver.resolve("Password Reset Flow abuse")
    assert res.method == "fuzzy"
    assert res.id == "password_reset_flow"
    assert 0.72 <= res.score < 0.86
    assert resolver.match("Password Reset Flow abuse") is None
    assert resolver.match("Password Reset Flow abuse", 0.72).id == "password_reset_flow"


def test_resolver_empty_inputs():
    resolver = Resolver(build_index([]))
    assert resolver.resolve("anything") is None
    assert resolver.resolve("   ") is None


def test_first_registered_key_wins():
    index = build_index([
        {"id": "a", "name": "Alpha", "aliases": ["shared name"]},
        {"id": "b", "name": "Beta", "aliases": ["Shared Name"]},
    ])
    assert index.lookup_key("shared name").id == "a"


def test_duplicate_ids_first_wins(caplog):
    with caplog.at_level(logging.WARNING, logger="attack_tree_assist.kb"):
        index = build_index([
            {"id": "a", "name": "First"},
            {"id": "a", "name": "Second"},
        ])
    assert len(index) == 1
    assert index.get("a").name == "First"
    assert "duplicate" in caplog.text


def test_scenario_alias_overlay(resolver):
    assert resolver.add_aliases({"stuff creds": "Credential Stuffing"}) == 1
    res = resolver.resolve("Stuff creds")
    assert res.id == "credential_stuffing"
    assert res.method == "scenario_alias"
    # canonical side unknown to the KB
    assert resolver.add_aliases({"foo": "Nonexistent Technique"}) == 0


def test_gold_phrase_ids(resolver, scenario):
    ids = phrase_ids(scenario.gold_must_have, scenario, resolver, 0.86)
    assert ids == {"password_reset_flow", "intercept_reset_email", "credential_stuffing"}


def test_explain_goal(resolver, scenario):
    info = resolver.explain("  take over a USER account ", scenario)
    assert info.title == "Goal: Take over a user account"
    assert info.severity == "info"
    assert info.summary == scenario.brief
    assert info.why == "Root objective"


def test_explain_goal_default_text(resolver):
    scenario = Scenario(goal="Steal the cat")
    info = resolver.explain("steal the cat", scenario)
    assert info.summary
    assert info.title == "Goal: Steal the cat"


def test_explain_exact_uses_narrative_fallbacks(resolver):
    info = resolver.explain("Credential Stuffing")
    assert info.severity == "high"
    assert info.summary.startswith("Try username/password pairs")
    assert info.why == "People reuse passwords."

    # comms when there is no description
    assert resolver.explain("Intercept Reset Email").summary.startswith("Read the reset link")
    # no narrative at all
    assert resolver.explain("Phishing Credentials").summary == NO_NARRATIVE


def test_explain_fuzzy_carries_closest_match_hint(resolver):
    info = resolver.explain("Password Reset Flow abuse")
    assert info.summary.endswith("(closest match: Password Reset Flow)")
    assert info.title == "Password Reset Flow"


def test_explain_unknown(resolver):
    info = resolver.explain("zzqx vvbn")
    assert info.severity == "unknown"
    assert info.summary == NO_EXPLANATION
    assert info.closest == []
    assert resolver.explain(None).title == "—"


def test_explain_unknown_consults_neighbours(resolver):
    calls = []

    def closest(text, k):
        calls.append((text, k))
        return [{"id": "credential_stuffing", "score": 0.42}, {"id": "missing", "score": 0.3}]

    info = resolver.explain("zzqx vvbn", closest=closest, k=2)
    assert calls == [("zzqx vvbn", 2)]
    assert info.closest == [{"id": "credential_stuffing", "name": "Credential Stuffing",
                             "score": 0.42, "percent": "42%"}]
    assert "closest" in info.to_dict()


def test_explain_weak_fuzzy_match_is_a_hint_only(resolver):
    res = resolver.resolve("Credential stuffer tool")
    assert res.id == "credential_stuffing"
    assert res.score < resolver.config.t_med

    info = resolver.explain("Credential stuffer tool")
    assert info.severity == "unknown"
    assert info.title == "Credential stuffer tool"
    assert info.summary == f"{NO_EXPLANATION} (closest match: Credential Stuffing)"
    assert info.closest[0]["id"] == "credential_stuffing"
    assert info.closest[0]["percent"] == f"{round(res.score * 100)}%"


def test_explain_hint_not_duplicated_with_neighbours(resolver):
    def closest(text, k):
        return [{"id": "credential_stuffing", "score": 0.5}]

    info = resolver.explain("Credential stuffer tool", closest=closest)
    assert [n["id"] for n in info.closest] == ["credential_stuffing"]
    assert info.closest[0]["score"] == 0.5


def test_clear_aliases(resolver):
    assert resolver.add_aliases({"zebra crossing": "Credential Stuffing"}) == 1
    assert resolver.resolve("zebra crossing").method == "scenario_alias"
    resolver.clear_aliases()
    res = resolver.resolve("zebra crossing")
    assert res is None or res.method == "fuzzy"
