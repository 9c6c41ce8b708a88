"""
Answer Sheet Transcriber Service: Main Entry Point
====================================================
Starts the Flask-based transcription and evaluation microservice.

Usage:
    python main.py                    # Default: 0.0.0.0:3000
    python main.py --port 8000        # Custom port
    python main.py --debug            # Debug mode
"""

import argparse
import logging
import os

from answerscan.server import create_app

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Answer Sheet Transcriber Service")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host")
    parser.add_argument(
        "--port", type=int, default=int(os.getenv("PORT", "3000")), help="Bind port"
    )
    parser.add_argument("--debug", action="store_true", help="Debug mode")
    args = parser.parse_args()

    app = create_app()

    config = app.config["TRANSCRIBER_CONFIG"]
    if not config.api_key:
        logger.warning("TOGETHER_API_KEY is not set; model calls will fail")
    logger.info(f"Starting server on {args.host}:{args.port}")
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    main()
