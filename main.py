import argparse
import atexit
import logging

from proxy.core import HOST, PORT, LOG_FILE, configure_logging
from proxy.server import create_app
from rendering import get_session_manager


def main(argv=None):
    parser = argparse.ArgumentParser(description="Rendering Proxy Server")
    parser.add_argument("--host", default=HOST, help="Bind address")
    parser.add_argument("--port", type=int, default=PORT, help="Bind port")
    parser.add_argument("--log-file", default=LOG_FILE, help="Also write logs to this file")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    args = parser.parse_args(argv)

    logger = configure_logging(
        level=logging.DEBUG if args.debug else logging.INFO,
        log_file=args.log_file,
    )

    # The browser outlives every request; stop it with the process
    atexit.register(get_session_manager().release)

    app = create_app()
    logger.info(f"[SYSTEM] Server running on http://{args.host}:{args.port}")
    app.run(host=args.host, port=args.port, threaded=True)


if __name__ == "__main__":
    main()
