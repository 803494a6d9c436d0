#!/usr/bin/env python3
"""
Persistent assistant server for the attack tree editor.

Communicates via stdin/stdout JSON-line protocol.
All debug/logging goes to a log file; stdout is reserved for protocol only.

Protocol:
    UI -> Python (stdin):  {"id":"req_1","command":"suggest","data":{...}}\n
    Python -> UI (stdout): {"id":"req_1","success":true,"result":{...}}\n

Commands:
    ping                  - Health check
    shutdown              - Graceful exit
    resolve               - Map a label onto a KB entry
    explain               - Plain-language explanation of a label
    suggest               - Ranked next-node suggestions
    prune                 - Flags for low-value / broken nodes
    keep                  - Suppress a flagged node (by label, or gate by elementId)
    evaluate              - 0-100 tree score against the scenario
    register_scenario     - Activate a scenario and/or set its goal
    add_scenario_aliases  - Extra scenario aliases for resolution
    accept_suggestion     - Add a suggestion to a tree snapshot

Tree snapshots are ``{"nodes": [...], "links": [...]}`` or JointJS
``{"cells": [...]}`` documents, passed as ``data.graph``.
"""

import argparse
import json
import logging
import os
import socket
import sys
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from .assistant import AttackTreeAssistant, as_graph

logger = logging.getLogger(__name__)


class ProtocolError(Exception):
    """Malformed request: missing or mistyped fields."""


# Log file for debug output (NOT stdout)
# Try multiple locations, the package dir may be read-only.
def find_log_file() -> Path:
    candidates = [
        Path(__file__).resolve().parent / "server.log",
        Path(sys.executable).resolve().parent / "server.log",
        Path(os.environ.get('TEMP', os.environ.get('TMP', tempfile.gettempdir()))) / "attack_tree_assist_server.log",
    ]
    for candidate in candidates:
        try:
            with open(candidate, 'a', encoding='utf-8') as f:
                f.write("")  # Test write
            return candidate
        except OSError:
            continue
    return candidates[-1]


class IsoFormatter(logging.Formatter):
    """``[2024-05-01T12:00:00.123456] message``"""

    def formatTime(self, record, datefmt=None):
        return datetime.fromtimestamp(record.created).isoformat()


def setup_logging(log_file: Path, level=logging.INFO) -> None:
    """Route the package's loggers to ``log_file`` and never to stdout."""
    handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
    handler.setFormatter(IsoFormatter('[%(asctime)s] %(name)s: %(message)s'))
    package_logger = logging.getLogger('attack_tree_assist')
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    package_logger.propagate = False


# Command registry: handler(assistant, data) -> JSON-serializable result
COMMAND_HANDLERS: Dict[str, Callable[[AttackTreeAssistant, Dict[str, Any]], Any]] = {}


def register_command(name, handler=None):
    """Register a command handler; usable as a decorator."""
    if handler is not None:
        COMMAND_HANDLERS[name] = handler
        return handler

    def decorator(func):
        COMMAND_HANDLERS[name] = func
        return func
    return decorator


def _get(data: Dict[str, Any], *keys, default=None):
    """First present key (snake_case or the UI's camelCase)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _require_str(data: Dict[str, Any], *keys) -> str:
    value = _get(data, *keys)
    if not isinstance(value, str):
        raise ProtocolError(f"Missing string field '{keys[0]}'")
    return value


def _graph_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    graph = data.get('graph')
    if graph is None and ('nodes' in data or 'cells' in data):
        graph = data
    if graph is None:
        return {}
    if not isinstance(graph, dict):
        raise ProtocolError("'graph' must be an object with nodes/links or cells")
    return graph


def _optional_int(data: Dict[str, Any], *keys) -> Optional[int]:
    value = _get(data, *keys)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ProtocolError(f"'{keys[0]}' must be an integer")


@register_command('ping')
def cmd_ping(assistant, data):
    return {"status": "alive", "pid": os.getpid(), "kb_size": len(assistant.index)}


@register_command('resolve')
def cmd_resolve(assistant, data):
    label = _require_str(data, 'label')
    res = assistant.resolve(label)
    return {"label": label, "resolution": res.to_dict() if res else None}


@register_command('explain')
def cmd_explain(assistant, data):
    return assistant.explain(_require_str(data, 'label')).to_dict()


@register_command('suggest')
def cmd_suggest(assistant, data):
    result = assistant.suggest(
        _graph_payload(data),
        _get(data, 'parent_label', 'parentLabel'),
        _optional_int(data, 'limit_top', 'limitTop', 'topK'),
        _optional_int(data, 'limit_more', 'limitMore'),
    )
    return result.to_dict()


@register_command('prune')
def cmd_prune(assistant, data):
    flags = assistant.prune(_graph_payload(data), _optional_int(data, 'max_visible', 'maxVisible'))
    return {"flags": [f.to_dict() for f in flags]}


@register_command('keep')
def cmd_keep(assistant, data):
    label = _get(data, 'label')
    element_id = _get(data, 'element_id', 'elementId')
    if not isinstance(label, str) and not isinstance(element_id, str):
        raise ProtocolError("keep needs 'label' or 'elementId'")
    assistant.keep(label if isinstance(label, str) else None,
                   element_id if isinstance(element_id, str) else None)
    return {"kept": assistant.kept.to_list(), "kept_elements": assistant.kept.element_ids()}


@register_command('evaluate')
def cmd_evaluate(assistant, data):
    return assistant.evaluate(_graph_payload(data))


@register_command('register_scenario')
def cmd_register_scenario(assistant, data):
    scenario = data.get('scenario')
    if scenario is not None and not isinstance(scenario, dict):
        raise ProtocolError("'scenario' must be an object")
    goal = _get(data, 'goal', 'label')
    if scenario is None and goal is None:
        raise ProtocolError("register_scenario needs 'goal' or 'scenario'")
    return assistant.register_scenario_goal(goal, scenario).to_dict()


@register_command('add_scenario_aliases')
def cmd_add_scenario_aliases(assistant, data):
    aliases = data.get('aliases')
    if not isinstance(aliases, dict):
        raise ProtocolError("'aliases' must be an object")
    return {"added": assistant.add_scenario_aliases(aliases)}


@register_command('accept_suggestion')
def cmd_accept_suggestion(assistant, data):
    suggestion = data.get('suggestion')
    if not isinstance(suggestion, (dict, str)) or not suggestion:
        raise ProtocolError("'suggestion' must be an object or a name")
    graph = as_graph(_graph_payload(data))
    result = assistant.accept(graph, suggestion, _get(data, 'parent_label', 'parentLabel'))
    return {"accepted": result.to_dict(), "graph": graph.to_dict()}


def send_response(out, request_id, success, result=None, error=None):
    """Send a JSON-line response (stdout or TCP socket)."""
    msg = {"id": request_id, "success": success}
    if result is not None:
        msg["result"] = result
    if error is not None:
        msg["error"] = error
    out.write(json.dumps(msg, ensure_ascii=False) + "\n")
    out.flush()


def handle_line(assistant: AttackTreeAssistant, line: str) -> Tuple[Optional[Dict[str, Any]], bool]:
    """
    Process one request line.

    Returns:
        (response message or None for blank lines, whether to stop serving)
    """
    line = line.strip()
    if not line:
        return None, False

    request_id = "unknown"
    try:
        msg = json.loads(line)
        if not isinstance(msg, dict):
            raise ProtocolError("Request must be a JSON object")
        request_id = msg.get("id", "unknown")
        command = msg.get("command", "")
        data = msg.get("data") or {}
        if not isinstance(data, dict):
            raise ProtocolError("'data' must be an object")

        logger.info("Received command: %s (id: %s)", command, request_id)

        if command == "shutdown":
            logger.info("Shutdown requested")
            return {"id": request_id, "success": True, "result": {"status": "shutting_down"}}, True

        handler = COMMAND_HANDLERS.get(command)
        if handler is None:
            return {"id": request_id, "success": False, "error": f"Unknown command: {command}"}, False

        start = datetime.now()
        result = handler(assistant, data)
        elapsed = (datetime.now() - start).total_seconds()
        logger.info("%s completed in %.3fs", command, elapsed)
        return {"id": request_id, "success": True, "result": result}, False

    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON: %s (line: %s)", e, line[:200])
        return {"id": request_id, "success": False, "error": f"Invalid JSON: {e}"}, False
    except ProtocolError as e:
        logger.warning("Bad request %s: %s", request_id, e)
        return {"id": request_id, "success": False, "error": str(e)}, False
    except Exception as e:
        logger.exception("Error handling command")
        return {"id": request_id, "success": False, "error": f"{type(e).__name__}: {e}"}, False


def serve(assistant: AttackTreeAssistant, input_stream, output_stream) -> None:
    """Main loop: read JSON-line commands until EOF or shutdown."""
    for line in input_stream:
        response, stop = handle_line(assistant, line)
        if response is not None:
            send_response(output_stream, response["id"], response["success"],
                          response.get("result"), response.get("error"))
        if stop:
            break


def main(argv=None):
    parser = argparse.ArgumentParser(description='Attack Tree Assistant server')
    parser.add_argument('--port', type=int, default=0,
                        help='TCP port to connect back to (instead of stdin/stdout)')
    parser.add_argument('--kb', help='KB path or URL (attack patterns JSON)')
    parser.add_argument('--scenario', help='Scenario path or URL')
    parser.add_argument('--scenario-id', help='Scenario id inside a multi-scenario file')
    parser.add_argument('--config', help='config.json path or URL')
    parser.add_argument('--debug', action='store_true', help='Verbose log file')
    args = parser.parse_args(argv)

    log_file = find_log_file()
    setup_logging(log_file, logging.DEBUG if args.debug else logging.INFO)
    logger.info("=== Attack Tree Assistant server - PID %d ===", os.getpid())
    logger.info("Python: %s", sys.version)
    logger.info("Log file: %s", log_file)

    # TCP socket mode: connect back to the UI's listener on localhost
    sock = None
    input_stream, output_stream = sys.stdin, sys.stdout
    if args.port > 0:
        logger.info("TCP mode: connecting to 127.0.0.1:%d", args.port)
        try:
            sock = socket.create_connection(('127.0.0.1', args.port))
        except OSError as e:
            logger.error("FATAL: Failed to connect to TCP port %d: %s", args.port, e)
            sys.exit(1)
        input_stream = sock.makefile('r', encoding='utf-8')
        output_stream = sock.makefile('w', encoding='utf-8')
        logger.info("TCP connection established")

    assistant = AttackTreeAssistant.from_sources(args.kb, args.scenario, args.config, args.scenario_id)
    logger.info("Registered commands: %s", list(COMMAND_HANDLERS.keys()))

    send_response(output_stream, "__ready__", True, {
        "pid": os.getpid(),
        "commands": ["shutdown"] + list(COMMAND_HANDLERS.keys()),
        "log_file": str(log_file),
        "kb_size": len(assistant.index),
        "scenario": assistant.scenario.id or None,
    })

    try:
        serve(assistant, input_stream, output_stream)
    finally:
        assistant.close()
        logger.info("Server exiting")
        if sock is not None:
            sock.close()


if __name__ == "__main__":
    main()
