"""
Module-level app for ASGI servers started directly:

    uvicorn storefront.asgi:app

Settings are read from the environment at import time. The entry point
(`python -m storefront`) does not import this module.
"""

from storefront.main import create_app

app = create_app()
