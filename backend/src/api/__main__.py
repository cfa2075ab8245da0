"""Entry point for running the API server."""
import logging

import uvicorn

from core.config import get_settings

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    settings = get_settings()
    uvicorn.run("api.main:app", host=settings.host, port=settings.port)
