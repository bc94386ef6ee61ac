#!/usr/bin/env python3
"""
Banking Ledger Entry Point

Starts the FastAPI server using the LEDGER_* environment configuration.
"""

import sys

from banking_ledger.api import run_server
from banking_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Banking Ledger API...")
    print(f"Storage: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Banking Ledger API...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
