"""
Storefront Backend — Request-Handling Core
============================================

What: The middleware pipeline every request of the storefront site passes
      through: security headers, input sanitization, rate limiting,
      structured logging and the error boundary, plus port-safe startup.

Layout:
    config.py      Settings (pydantic-settings), built once per process
    logger.py      Structured JSON logger
    exceptions.py  AppError taxonomy and boundary classification
    middleware/    One module per pipeline stage
    routes/        Built-in routes (/health); business routers plug in
    main.py        Application factory
    server.py      Entry point: port resolution + uvicorn
"""

__version__ = "1.0.0"
