"""
Family Panel - Main entry point.

Runs the API with uvicorn:

    python -m familypanel.main

or directly:

    uvicorn familypanel.api.app:app --reload
"""

from __future__ import annotations

import logging

import uvicorn
from dotenv import load_dotenv

from familypanel.config import get_settings


def main():
    """Main entry point."""
    # Export .env to the process, so the reloader child sees the same values
    load_dotenv()
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "familypanel.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug and not settings.is_production,
    )


if __name__ == "__main__":
    main()
