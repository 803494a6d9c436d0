import io
import json

import pytest

from attack_tree_assist.server import COMMAND_HANDLERS, handle_line, register_command, send_response, serve

from conftest import make_graph


def request(command, data=None, request_id="req_1"):
    return json.dumps({"id": request_id, "command": command, "data": data or {}})


def test_ping(assistant):
    response, stop = handle_line(assistant, request("ping"))
    assert not stop
    assert response["id"] == "req_1"
    assert response["success"] is True
    assert response["result"]["status"] == "alive"
    assert response["result"]["kb_size"] == 12


def test_blank_line_is_ignored(assistant):
    assert handle_line(assistant, "   \n") == (None, False)


def test_unknown_command(assistant):
    response, stop = handle_line(assistant, request("teleport"))
    assert not stop
    assert response["success"] is False
    assert "Unknown command: teleport" in response["error"]


def test_invalid_json(assistant):
    response, _ = handle_line(assistant, "{not json")
    assert response["id"] == "unknown"
    assert response["success"] is False
    assert response["error"].startswith("Invalid JSON")


def test_missing_field_is_protocol_error(assistant):
    response, _ = handle_line(assistant, request("resolve", {}))
    assert response["success"] is False
    assert "label" in response["error"]

    response, _ = handle_line(assistant, request("suggest", {"limitTop": "many"}))
    assert response["success"] is False
    assert "limit_top" in response["error"]


def test_handler_exception_becomes_error(assistant):
    @register_command("explode")
    def cmd_explode(assistant, data):
        raise RuntimeError("boom")

    try:
        response, stop = handle_line(assistant, request("explode"))
    finally:
        COMMAND_HANDLERS.pop("explode")
    assert not stop
    assert response == {"id": "req_1", "success": False, "error": "RuntimeError: boom"}


def test_resolve_and_explain(assistant):
    response, _ = handle_line(assistant, request("resolve", {"label": "credential stuffing"}))
    assert response["result"]["resolution"]["id"] == "credential_stuffing"

    response, _ = handle_line(assistant, request("explain", {"label": "Credential Stuffing"}))
    assert response["result"]["title"] == "Credential Stuffing"
    assert response["result"]["severity"] == "high"


def test_suggest_accepts_camel_case(assistant):
    graph = make_graph(["Take over a user account", "Password Reset Flow"], [(0, 1)]).to_dict()
    response, _ = handle_line(assistant, request("suggest", {
        "graph": graph, "parentLabel": "Password Reset Flow", "limitTop": 1, "limitMore": 0,
    }))
    result = response["result"]
    assert response["success"] is True
    assert result["parent_id"] == "password_reset_flow"
    assert [s["id"] for s in result["top"]] == ["intercept_reset_email"]
    assert result["more"] == []


def test_prune_keep_cycle(assistant):
    graph = make_graph(["Take over a user account", "Dumpster Diving"], [(0, 1)]).to_dict()
    response, _ = handle_line(assistant, request("prune", {"graph": graph}))
    labels = [f["label"] for f in response["result"]["flags"]]
    assert "Dumpster Diving" in labels
    assert all("elementId" in f for f in response["result"]["flags"])

    response, _ = handle_line(assistant, request("keep", {"label": "dumpster diving"}))
    assert response["result"]["kept"] == ["dumpster diving"]

    response, _ = handle_line(assistant, request("prune", {"graph": graph}))
    assert "Dumpster Diving" not in [f["label"] for f in response["result"]["flags"]]


def test_evaluate(assistant):
    response, _ = handle_line(assistant, request("evaluate", {"graph": {"nodes": [], "links": []}}))
    assert response["result"]["score"]["overall"] == 0


def test_register_scenario_and_aliases(assistant):
    response, _ = handle_line(assistant, request("register_scenario", {"goal": "Own the inbox"}))
    assert response["result"]["goal"] == "Own the inbox"

    response, _ = handle_line(assistant, request("register_scenario", {}))
    assert response["success"] is False

    response, _ = handle_line(assistant, request("add_scenario_aliases", {
        "aliases": {"Phishing Credentials": ["fake login page"]},
    }))
    assert response["result"]["added"] == 1

    response, _ = handle_line(assistant, request("add_scenario_aliases", {"aliases": ["x"]}))
    assert response["success"] is False


def test_accept_suggestion_returns_graph(assistant):
    graph = make_graph(["Password Reset Flow"]).to_dict()
    response, _ = handle_line(assistant, request("accept_suggestion", {
        "graph": graph,
        "suggestion": {"id": "intercept_reset_email", "name": "Intercept Reset Email"},
        "parentLabel": "Password Reset Flow",
    }))
    result = response["result"]
    assert result["accepted"]["parent_id"] == "n0"
    assert len(result["graph"]["nodes"]) == 2
    assert len(result["graph"]["links"]) == 1


def test_shutdown_stops(assistant):
    response, stop = handle_line(assistant, request("shutdown", request_id="bye"))
    assert stop is True
    assert response["result"] == {"status": "shutting_down"}


def test_serve_reads_until_shutdown(assistant):
    lines = "\n".join([request("ping", request_id="a"), "", request("shutdown", request_id="b"),
                       request("ping", request_id="never")]) + "\n"
    out = io.StringIO()
    serve(assistant, io.StringIO(lines), out)
    responses = [json.loads(line) for line in out.getvalue().splitlines()]
    assert [r["id"] for r in responses] == ["a", "b"]


def test_send_response_omits_empty_fields():
    out = io.StringIO()
    send_response(out, "x", True)
    assert json.loads(out.getvalue()) == {"id": "x", "success": True}


@pytest.mark.parametrize("payload", ['[1, 2]', '{"id": "q", "command": "ping", "data": [1]}'])
def test_non_object_payloads_rejected(assistant, payload):
    response, _ = handle_line(assistant, payload)
    assert response["success"] is False


def test_keep_gate_by_element_id(assistant):
    graph = make_graph(["Take over a user account", "", ""], [(0, 1), (0, 2)],
                       gates={1: "AND", 2: "AND"}).to_dict()
    response, _ = handle_line(assistant, request("keep", {"elementId": "n1"}))
    assert response["result"] == {"kept": [], "kept_elements": ["n1"]}

    response, _ = handle_line(assistant, request("prune", {"graph": graph}))
    ids = [f["elementId"] for f in response["result"]["flags"]]
    assert "n1" not in ids
    assert "n2" in ids


def test_keep_needs_label_or_element(assistant):
    response, _ = handle_line(assistant, request("keep", {"elementId": 3}))
    assert response["success"] is False
    assert "elementId" in response["error"]
