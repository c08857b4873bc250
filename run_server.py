# run_server.py
"""
Helper script to run the FastAPI app locally.

Usage:
    python run_server.py
"""

import uvicorn
from geonear.log_config import configure_logging
from geonear.settings import get_settings


def main():
    """
    Launch the FastAPI app with uvicorn, using settings from environment variables.
    """
    settings = get_settings()
    configure_logging(settings)
    uvicorn.run(
        "geonear.server:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=None,
    )


if __name__ == "__main__":
    main()
