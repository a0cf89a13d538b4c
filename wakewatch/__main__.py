"""
============================================================
 WakeWatch — Entry Point
 Run: python -m wakewatch [--serve] [--camera N] [--bridge-url URL]
============================================================
"""

import argparse
import logging
import signal
import sys
import time

from wakewatch import config, create_app, socketio


def configure_logging(level: str = config.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s %(message)s",
        datefmt="%H:%M:%S",
    )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="wakewatch",
                                     description="Webcam attention monitor")
    parser.add_argument("--camera", type=int, default=config.CAMERA_INDEX,
                        help="camera index (default: %(default)s)")
    parser.add_argument("--bridge-url", default=config.BRIDGE_URL,
                        help="WebSocket URL that receives attention snapshots")
    parser.add_argument("--serve", action="store_true",
                        help="also serve the HTTP/SocketIO control API")
    parser.add_argument("--no-pose", action="store_true", help="disable posture tracking")
    parser.add_argument("--log-level", default=config.LOG_LEVEL)
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    configure_logging(args.log_level)
    log = logging.getLogger("wakewatch")

    from wakewatch.bridge import LogBridge, SnapshotBridge, SocketIOBridge
    from wakewatch.camera import Camera
    from wakewatch.perception import LandmarkPipeline
    from wakewatch.pipeline import ProcessingLoop
    from wakewatch.session import AttentionSession

    downstream = LogBridge()
    if args.bridge_url:
        downstream = SnapshotBridge(args.bridge_url)
        downstream.connect(timeout=3.0)
    bridge = SocketIOBridge(socketio, downstream) if args.serve else downstream

    session = AttentionSession(bridge=bridge)
    camera = Camera(src=args.camera).start()
    landmarks = LandmarkPipeline(pose_model=None if args.no_pose else config.POSE_LANDMARKER_MODEL_PATH)
    loop = ProcessingLoop(session, camera, landmarks)

    def shutdown(sig=None, frame=None):
        log.info("[WAKEWATCH] Shutting down gracefully...")
        loop.stop()
        session.stop()
        camera.stop()
        landmarks.close()
        session.tone.close()
        if isinstance(downstream, SnapshotBridge):
            downstream.disconnect()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)

    session.start()
    loop.start()
    log.info("[WAKEWATCH] Monitoring camera %s — hold still to calibrate", args.camera)

    if args.serve:
        app = create_app(session)
        log.info("[WAKEWATCH] Control API on http://%s:%s", config.FLASK_HOST, config.FLASK_PORT)
        socketio.run(app, host=config.FLASK_HOST, port=config.FLASK_PORT,
                     debug=config.FLASK_DEBUG, use_reloader=False, log_output=False,
                     allow_unsafe_werkzeug=True)
    else:
        while True:
            time.sleep(1.0)


if __name__ == "__main__":
    main()
