"""Application entry point for the Document Ledger API server."""

import uvicorn

from src.api.app import app
from src.utils.config import load_config
from src.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def main() -> None:
    """Start the FastAPI application server."""
    config = load_config()
    setup_logging(config.log_level)
    logger.info(
        "Starting Document Ledger API (providers: %s, ledger: %s)",
        ", ".join(config.providers.order),
        config.ledger.database_url,
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
