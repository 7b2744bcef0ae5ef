#!/usr/bin/env python3
"""
Points Economy Entry Point

Starts the FastAPI server with settings from the POINTS_* environment.
"""

import sys

from points_economy.api import run_server
from points_economy.config import get_config
from points_economy.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, log_file=config.log_file)

    print("Starting Points Economy...")
    print(f"Store: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\nShutting down Points Economy...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
