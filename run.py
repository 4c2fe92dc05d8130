"""Application entry point for the Card Shop API."""

from __future__ import annotations

import uvicorn

from cardshop import create_app
from cardshop.core.config_core import get_settings


def main() -> None:
    """Run the Card Shop FastAPI server."""

    settings = get_settings()
    uvicorn.run(create_app(), host=settings.APP_HOST, port=settings.APP_PORT)


if __name__ == "__main__":
    main()
