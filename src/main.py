"""Main entry point for the progress API server"""
import logging
import uvicorn
from src.config import validate_config, API_HOST, API_PORT, LOG_LEVEL

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO)
)

logger = logging.getLogger(__name__)


def main() -> None:
    """Validate configuration and serve src.api.server:app"""
    validate_config()
    logger.info(f"Starting progress API on {API_HOST}:{API_PORT}")
    uvicorn.run(
        "src.api.server:app",
        host=API_HOST,
        port=API_PORT,
        log_level=LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    main()
