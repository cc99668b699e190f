#!/usr/bin/env python3
"""
Microfinance Loan Repayment Service Entry Point

Starts the FastAPI server with the host and port from configuration.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from microfinance.api import run_server
from microfinance.config import get_config
from microfinance.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(
        level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file
    )

    print("Starting Microfinance Loan Repayment Service...")
    print(f"Storage: {config.database_url}")
    print(f"API available at: http://{config.api_host}:{config.api_port}")
    print(f"Documentation at: http://{config.api_host}:{config.api_port}/docs")
    print()

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=config.api_reload
        )
    except KeyboardInterrupt:
        print("\nShutting down Microfinance Loan Repayment Service...")
    except Exception as e:
        logger.exception("Server failed to start")
        print(f"Error starting server: {e}")
        sys.exit(1)
