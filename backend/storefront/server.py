"""
Storefront Backend — Startup Entry Point
==========================================

What:  Loads configuration, finds a free port and runs uvicorn.
Why:   In development several services compete for port 3000; rather than
       crash, the server scans forward and tells you where it landed.
How:   `find_available_port()` tries to bind each candidate on the wildcard
       address, releasing it immediately on success. The first bindable port
       in a window of twenty wins; none free aborts startup.

Startup sequence:
    1. Load settings (malformed values fail here)
    2. Configure structured logging
    3. Validate production secrets
    4. Resolve the listening port (warn if it is not the preferred one)
    5. Build the app and hand it to uvicorn

Any failure in steps 1-4 is logged and exits with status 1.
"""

import socket
import sys

import uvicorn
from pydantic import ValidationError

from storefront.config import load_settings
from storefront.exceptions import ConfigurationError, PortUnavailableError
from storefront.logger import logger, setup_logging
from storefront.main import create_app

PORT_SCAN_ATTEMPTS = 20
WILDCARD_HOST = "0.0.0.0"
MAX_PORT = 65535


def is_port_available(port: int, host: str = WILDCARD_HOST) -> bool:
    """True if a TCP socket can bind `host:port` right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_available_port(start_port: int = 3000, host: str = WILDCARD_HOST) -> int:
    """
    Return the first bindable port in [start_port, start_port + 20).

    Raises:
        PortUnavailableError: every candidate is taken. Not retried; the
            caller is expected to abort startup.
    """
    end_port = min(start_port + PORT_SCAN_ATTEMPTS, MAX_PORT + 1)
    for port in range(start_port, end_port):
        if is_port_available(port, host):
            return port
    raise PortUnavailableError(start_port, PORT_SCAN_ATTEMPTS)


def resolve_port(preferred_port: int) -> int:
    port = find_available_port(preferred_port)
    if port != preferred_port:
        logger.warn(f"Port {preferred_port} is busy, using port {port} instead")
    return port


def main() -> None:
    settings = None
    try:
        settings = load_settings()
        setup_logging(settings)
        settings.validate_required_for_production()
        port = resolve_port(settings.port)
    except (ValidationError, ConfigurationError, PortUnavailableError) as exc:
        if settings is None:
            setup_logging()
        logger.error("Failed to start server", exc)
        sys.exit(1)

    app = create_app(settings)

    logger.info(
        f"Server running on http://localhost:{port}/",
        {"environment": settings.environment, "port": port},
    )
    # log_config=None keeps uvicorn on the handlers installed by setup_logging
    uvicorn.run(app, host=settings.host, port=port, log_config=None)


if __name__ == "__main__":
    main()
