"""
============================================================
 WakeWatch — Flask Application Factory
============================================================
"""

from flask import Flask
from flask_socketio import SocketIO

socketio = SocketIO()


def create_app(session=None):
    """Create the Flask app around an AttentionSession (a default one if none is given)."""
    app = Flask(__name__)

    from wakewatch import config
    app.config["SECRET_KEY"] = config.FLASK_SECRET_KEY

    socketio.init_app(app, async_mode="threading", cors_allowed_origins="*")

    if session is None:
        from wakewatch.bridge import LogBridge, SnapshotBridge, SocketIOBridge
        from wakewatch.session import AttentionSession
        if config.BRIDGE_URL:
            downstream = SnapshotBridge(config.BRIDGE_URL)
            downstream.connect(timeout=0.0)   # socket thread keeps retrying in the background
        else:
            downstream = LogBridge()
        session = AttentionSession(bridge=SocketIOBridge(socketio, downstream))

    from wakewatch.routes import register_routes
    register_routes(app, socketio, session)

    return app
