"""Run the metadata proxy service with uvicorn."""

import uvicorn

from .app import create_app
from .config import Config
from .logging_config import setup_logging


def main() -> None:
    config = Config.from_env()
    config.validate()
    setup_logging(config.log_level, config.log_format)

    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
