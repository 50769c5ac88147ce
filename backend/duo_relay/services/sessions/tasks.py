"""Background timers for the session lifecycle.

All tasks run through ``socketio.start_background_task`` and
``socketio.sleep`` so they follow whichever async mode the server runs in.
"""


def make_scheduler(socketio, logger):
    """Return a ``scheduler(delay_sec, callback, *args)`` for SessionManager."""

    def _schedule(delay_sec, callback, *args):
        def _runner():
            socketio.sleep(delay_sec)
            try:
                callback(*args)
            except Exception:
                logger.exception(f"[timer-error] callback={getattr(callback, '__name__', callback)} args={args}")

        socketio.start_background_task(_runner)

    return _schedule


def start_session_sweeper(app, socketio, manager):
    """Periodically drop empty sessions older than STALE_SESSION_SEC."""
    interval = int(app.config.get('SWEEP_INTERVAL_SEC', 300))
    threshold_ms = int(app.config.get('STALE_SESSION_SEC', 600)) * 1000

    def _worker():
        while True:
            socketio.sleep(interval)
            try:
                manager.sweep_stale(threshold_ms=threshold_ms)
            except Exception:
                app.logger.exception("[sweep-error]")

    app.logger.info(f"[timer-set] sweeper interval={interval}s threshold={threshold_ms // 1000}s")
    return socketio.start_background_task(_worker)


def start_idle_reaper(app, socketio, manager, on_idle):
    """Periodically hand connections idle past IDLE_TIMEOUT_SEC to ``on_idle``."""
    interval = int(app.config.get('IDLE_CHECK_INTERVAL_SEC', 60))
    timeout_ms = int(app.config.get('IDLE_TIMEOUT_SEC', 300)) * 1000

    def _worker():
        while True:
            socketio.sleep(interval)
            for sid in manager.idle_connections(timeout_ms=timeout_ms):
                app.logger.info(f"[idle-disconnect] sid={sid}")
                try:
                    on_idle(sid)
                except Exception:
                    app.logger.exception(f"[idle-error] sid={sid}")

    app.logger.info(f"[timer-set] idle reaper interval={interval}s timeout={timeout_ms // 1000}s")
    return socketio.start_background_task(_worker)
