import logging
import os

import uvicorn

from planning_poker.config import get_settings

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    logging.basicConfig(level=get_settings().log_level)
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))
    logger.info("Starting planning-poker on %s:%d", host, port)
    uvicorn.run("planning_poker.main:app", host=host, port=port)
