import pytest

from attack_tree_assist.assistant import AttackTreeAssistant
from attack_tree_assist.config import AssistConfig
from attack_tree_assist.core.graph import TreeGraph
from attack_tree_assist.kb import build_index
from attack_tree_assist.resolver import Resolver
from attack_tree_assist.scenario import Scenario

KB_DATA = [
    {
        "id": "password_reset_flow", "name": "Password Reset Flow", "severity": "high",
        "scenarios": ["auth"], "aliases": ["abuse password reset", "reset password flow"],
        "children": ["intercept_reset_email", {"id": "guess_security_questions"}],
        "description": "Abuse the 'forgot password' process to take control of the login.",
        "why": "Reset flows are often weaker than the login itself.",
    },
    {
        "id": "intercept_reset_email", "name": "Intercept Reset Email", "severity": "high",
        "scenarios": ["auth"], "aliases": ["read reset email"],
        "comms": "Read the reset link sent to the victim's inbox.",
    },
    {
        "id": "guess_security_questions", "name": "Guess Security Questions", "severity": "medium",
        "scenarios": ["auth"],
    },
    {
        "id": "credential_stuffing", "name": "Credential Stuffing", "severity": "high",
        "scenarios": ["auth"], "aliases": ["reuse leaked passwords"],
        "description": "Try username/password pairs leaked from other sites.",
        "why": "People reuse passwords.",
    },
    {
        "id": "phishing_credentials", "name": "Phishing Credentials", "severity": "high",
        "scenarios": ["auth"],
    },
    {
        "id": "password_spraying", "name": "Password Spraying", "severity": "medium",
        "scenarios": ["auth"],
    },
    {
        "id": "use_stolen_password", "name": "Use Stolen Password", "severity": "medium",
        "scenarios": ["auth"],
    },
    {
        "id": "default_admin_password", "name": "Default Admin Password", "severity": "high",
        "scenarios": ["iot"],
    },
    {
        "id": "join_home_wifi", "name": "Join Home WiFi", "severity": "medium",
        "scenarios": ["iot"],
    },
    {
        "id": "shoulder_surfing", "name": "Shoulder Surfing", "severity": "low",
        "scenarios": ["auth"], "lay_explain": "Watch someone type their password.",
    },
    {
        "id": "use_leaked_card_details", "name": "Use Leaked Card Details", "severity": "high",
        "scenarios": ["payments"],
    },
    {
        "id": "dumpster_diving", "name": "Dumpster Diving", "severity": "low",
    },
]

SCENARIO_DATA = {
    "id": "auth",
    "goal": "Take over a user account",
    "gold_must_have": ["Password Reset Flow", "Intercept Reset Email", "Credential Stuffing"],
    "gold_low_value": ["Shoulder Surfing"],
    "aliases": {"reuse leaked passwords": "Credential Stuffing"},
    "brief": "Get into someone else's account on a web service.",
}

SYNERGY_TEXT = "Password reset typically requires BOTH requesting a reset AND accessing the reset email."


@pytest.fixture
def config():
    return AssistConfig()


@pytest.fixture
def index():
    return build_index(KB_DATA)


@pytest.fixture
def resolver(index, config):
    return Resolver(index, config)


@pytest.fixture
def scenario():
    return Scenario.from_dict(SCENARIO_DATA)


@pytest.fixture
def assistant(scenario):
    return AttackTreeAssistant(KB_DATA, None, scenario)


def make_graph(labels, links=(), gates=None):
    """
    Build a graph from labels; node ids are n0, n1, ...

    Args:
        labels: Node labels in order ('' for gates)
        links: (parent_index, child_index) pairs
        gates: {index: 'AND'|'OR'}
    """
    gates = gates or {}
    nodes = []
    for i, label in enumerate(labels):
        node = {"id": f"n{i}", "label": label, "position": {"x": 100 * i, "y": 50}}
        if i in gates:
            node["gate"] = gates[i]
        nodes.append(node)
    return TreeGraph.from_dict({
        "nodes": nodes,
        "links": [{"source": f"n{a}", "target": f"n{b}"} for a, b in links],
    })


@pytest.fixture
def graph_factory():
    return make_graph
