"""Flask HTTP surface for the issue/confirm workflow."""

from __future__ import annotations

import logging
from typing import Any

from flask import Flask, jsonify, request
from flask_cors import CORS

from cardterm.core.errors import (
    CardTerminalError,
    NoPendingOperationError,
    OperationMismatchError,
    OperationPendingError,
)
from cardterm.core.model import IssueResult
from cardterm.core.session import TerminalSession

LOGGER = logging.getLogger(__name__)


def _normalize_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ValueError("allow must be boolean true/false")


def issue_payload(result: IssueResult) -> dict[str, Any]:
    body: dict[str, Any] = {
        "success": result.success,
        "elapsedMilliseconds": result.elapsed_ms,
        "attempts": result.attempts,
        "isCardEnd": result.card_end,
    }
    if not result.success or result.read is None:
        body["error"] = result.error
        return body

    read = result.read
    if read.is_hex_uid:
        body["uidHex"] = read.identifier
        body["reader"] = read.reader
        if read.facility is not None:
            body["facility"] = read.facility
            body["card"] = read.card_number
    else:
        body["uid"] = read.identifier
    body["operationId"] = result.operation_id
    body["timeoutSec"] = result.timeout_s
    return body


def create_app(session: TerminalSession) -> Flask:
    app = Flask(__name__)
    CORS(app, origins="*", allow_headers="*", methods=["GET", "POST", "OPTIONS"])

    @app.post("/issue-card")
    @app.post("/issue-card/")
    def issue_card():
        try:
            result = session.issue_card()
        except OperationPendingError as exc:
            return (
                jsonify(success=False, error=str(exc), operationId=exc.operation_id),
                409,
            )
        status = 500 if result.fault else 200
        return jsonify(issue_payload(result)), status

    @app.post("/confirm")
    def confirm():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify(success=False, error="Request body must be a JSON object"), 400
        operation_id = payload.get("operationId")
        if not isinstance(operation_id, str) or not operation_id.strip():
            return jsonify(success=False, error="operationId is required"), 400
        try:
            allow = _normalize_bool(payload.get("allow"))
        except ValueError as exc:
            return jsonify(success=False, error=str(exc)), 400

        try:
            result = session.confirm(operation_id, allow)
        except NoPendingOperationError as exc:
            return jsonify(success=False, error=str(exc)), 410
        except OperationMismatchError as exc:
            return jsonify(success=False, error=str(exc)), 409
        except (CardTerminalError, OSError) as exc:
            LOGGER.error("Confirm failed: %s", exc)
            return jsonify(success=False, error=str(exc)), 500

        body: dict[str, Any] = {"success": True, "action": result.action}
        if result.identifier is not None:
            body["uid"] = result.identifier
        return jsonify(body)

    @app.route("/card-status", methods=["GET", "POST"])
    def card_status():
        try:
            status = session.card_status()
        except (CardTerminalError, OSError) as exc:
            LOGGER.error("Status query failed: %s", exc)
            return jsonify(status=-1, error=str(exc)), 500
        return jsonify(status=int(status))

    return app


def serve(session: TerminalSession, *, host: str, port: int) -> None:
    LOGGER.info("Serving card terminal on http://%s:%d", host, port)
    create_app(session).run(host=host, port=port, threaded=True)
