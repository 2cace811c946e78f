#!/usr/bin/env python3
"""
Funds Transfer Service Entry Point

Starts the FastAPI server with the transfer and search endpoints.
"""

import sys

from funds_transfer.api import run_server
from funds_transfer.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Funds Transfer Service...")
    print(f"Database: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Funds Transfer Service...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
