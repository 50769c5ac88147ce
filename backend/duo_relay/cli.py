import signal
import sys

import click

from duo_relay import create_app, socketio
from duo_relay.socketio_events import shutdown


def install_shutdown_handlers(app) -> None:
    """Broadcast serverShutdown, close every connection and exit 0 on SIGTERM/SIGINT."""

    def _handle(signum, frame):
        app.logger.info(f"[shutdown] signal={signal.Signals(signum).name}")
        shutdown(app)
        app.logger.info("[shutdown] complete")
        sys.exit(0)

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)


@click.command('serve')
@click.option('--host', default=None, help='Interface to bind (defaults to HOST).')
@click.option('--port', type=int, default=None, help='Port to bind (defaults to PORT).')
@click.option('--debug/--no-debug', default=False, help='Run with the debugger enabled.')
def serve(host, port, debug):
    """Run the Elemental Duo relay server."""
    app = create_app()
    host = host or app.config['HOST']
    port = port or app.config['PORT']
    install_shutdown_handlers(app)
    app.logger.info(f"[startup] relay listening on {host}:{port} namespace={app.config['SOCKETIO_NAMESPACE']}")
    socketio.run(app, host=host, port=port, debug=debug, use_reloader=False, allow_unsafe_werkzeug=True)
