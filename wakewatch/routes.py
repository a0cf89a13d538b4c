"""
============================================================
 WakeWatch — Routes
 Session control, alarm acknowledgment and status over
 HTTP; batched state pushes over SocketIO.
============================================================
"""

import logging

from flask import jsonify, request

from wakewatch.alarms import CHALLENGE_TYPES

logger = logging.getLogger(__name__)


def _error(message: str, status: int = 400):
    return jsonify({"error": message}), status


def register_routes(app, socketio, session):
    """Register HTTP routes and SocketIO handlers for one session."""
    app.extensions["wakewatch.session"] = session

    def _push_state(payload: dict) -> None:
        socketio.emit("attention_state", payload)

    session.notifier.subscribe(_push_state)

    # ── Status ──
    @app.route("/api/status")
    def api_status():
        return jsonify(session.status())

    # ── Session lifecycle ──
    @app.route("/api/session/start", methods=["POST"])
    def api_start():
        session.start()
        return jsonify(session.status())

    @app.route("/api/session/stop", methods=["POST"])
    def api_stop():
        session.stop()
        return jsonify(session.status())

    # ── Alarms ──
    @app.route("/api/alarm/ack", methods=["POST"])
    def api_ack():
        data = request.get_json(silent=True) or {}
        answer = data.get("answer")
        if not isinstance(answer, str) or not answer:
            return _error("answer is required")
        accepted = session.acknowledge(answer)
        return jsonify({"accepted": accepted, "escalation": session.escalator.to_dict()})

    @app.route("/api/alarm/test", methods=["POST"])
    def api_test_alarm():
        data = request.get_json(silent=True) or {}
        kind = data.get("type", "phrase")
        if kind not in CHALLENGE_TYPES:
            return _error(f"type must be one of {', '.join(CHALLENGE_TYPES)}")
        challenge = session.trigger_test_alarm(kind)
        logger.info("[ROUTES] Test alarm triggered (%s)", kind)
        return jsonify({"challenge": challenge.to_dict(), "status": session.status()})

    @app.route("/api/absence/disarm", methods=["POST"])
    def api_disarm():
        session.disarm_absence_alarm()
        return jsonify({"absenceArmed": session.absence_armed})

    # ── SocketIO ──
    @socketio.on("connect")
    def on_connect():
        socketio.emit("system_status", session.status())

    @socketio.on("acknowledge")
    def on_acknowledge(data):
        answer = (data or {}).get("answer") if isinstance(data, dict) else data
        accepted = session.acknowledge(answer if isinstance(answer, str) else None)
        return {"accepted": accepted}
