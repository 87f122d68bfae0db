import os

import uvicorn

from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="server")


if __name__ == "__main__":
    setup_logging()
    logger.info("Starting RouteCast API", extra={"port": int(os.getenv("PORT", 8000))})

    uvicorn.run(
        "routecast.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=False,
    )
