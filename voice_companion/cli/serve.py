import argparse
import logging

import uvicorn

from voice_companion.server.app import create_app
from voice_companion.server.settings import settings

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main(argv=None) -> None:
    """Start the HTTP backend."""
    parser = argparse.ArgumentParser(description="Voice companion backend")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    args = parser.parse_args(argv)

    logger.info("Starting backend on http://%s:%s", args.host, args.port)
    uvicorn.run(create_app(), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
