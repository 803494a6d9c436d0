#!/usr/bin/env python3
"""
Dev Server for the Attack Tree Assistant

Lightweight HTTP server that exposes the server.py commands as a REST API
for the browser editor during development. Runs on localhost:5556.

Usage:
    python -m attack_tree_assist.dev_server --kb data/attack_patterns.json
    python -m attack_tree_assist.dev_server --port 5556

POST http://localhost:5556/<command> with the same JSON ``data`` payload
the JSON-line bridge takes, e.g. ``POST /suggest {"graph": {...},
"parent_label": "Password Reset Flow"}``.
"""

import argparse
import http.server
import json
import logging

from .assistant import AttackTreeAssistant
from .server import COMMAND_HANDLERS, handle_line

logger = logging.getLogger(__name__)

PORT = 5556


class AssistHandler(http.server.BaseHTTPRequestHandler):
    """Handle POST /<command> requests from the browser editor."""

    # Set by make_handler()
    assistant: AttackTreeAssistant = None

    def do_OPTIONS(self):
        """CORS preflight."""
        self.send_response(200)
        self._cors_headers()
        self.end_headers()

    def do_POST(self):
        command = self.path.strip('/').split('?', 1)[0]
        if command != 'shutdown' and command not in COMMAND_HANDLERS:
            self.send_error(404, 'Not found')
            return

        content_length = int(self.headers.get('Content-Length', 0))
        body = self.rfile.read(content_length) if content_length else b''

        try:
            data = json.loads(body) if body else {}
        except json.JSONDecodeError as e:
            return self._send_json({'success': False, 'error': f"Invalid JSON: {e}"})

        line = json.dumps({'id': 'http', 'command': command, 'data': data})
        response, _ = handle_line(self.assistant, line)
        response.pop('id', None)
        # Still 200 on failure so JS can parse the error
        self._send_json(response)

    def _send_json(self, payload):
        body = json.dumps(payload, ensure_ascii=False).encode('utf-8')
        self.send_response(200)
        self._cors_headers()
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _cors_headers(self):
        self.send_header('Access-Control-Allow-Origin', '*')
        self.send_header('Access-Control-Allow-Methods', 'POST, OPTIONS')
        self.send_header('Access-Control-Allow-Headers', 'Content-Type')

    def log_message(self, format, *args):
        # Compact logging
        logger.info("[DevServer] %s", args[0] if args else format)


def make_handler(assistant: AttackTreeAssistant):
    """Handler class bound to one assistant session."""
    return type('BoundAssistHandler', (AssistHandler,), {'assistant': assistant})


def main(argv=None):
    parser = argparse.ArgumentParser(description='Attack Tree Assistant dev server')
    parser.add_argument('--port', type=int, default=PORT)
    parser.add_argument('--kb', help='KB path or URL')
    parser.add_argument('--scenario', help='Scenario path or URL')
    parser.add_argument('--scenario-id', help='Scenario id inside a multi-scenario file')
    parser.add_argument('--config', help='config.json path or URL')
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='[%(asctime)s] %(message)s')
    assistant = AttackTreeAssistant.from_sources(args.kb, args.scenario, args.config, args.scenario_id)

    logger.info("Attack Tree Assistant - Dev Server on http://localhost:%d/<command>", args.port)
    logger.info("Commands: %s", ', '.join(sorted(COMMAND_HANDLERS)))

    server = http.server.HTTPServer(('', args.port), make_handler(assistant))
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("[DevServer] Stopped.")
    finally:
        server.server_close()
        assistant.close()


if __name__ == '__main__':
    main()
