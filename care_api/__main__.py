"""Serve the API with uvicorn: ``python -m care_api``."""

import uvicorn

from care_api.app import create_app
from care_api.settings import ApiSettings


def main() -> None:
    settings = ApiSettings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
