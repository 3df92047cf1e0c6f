#!/usr/bin/env python3
"""
Qard Fund Entry Point

Starts the FastAPI server with the fund core. Host, port and the backing
store are read from QARD_* environment variables.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from qard_fund.api import run_server
from qard_fund.config import get_config


if __name__ == "__main__":
    settings = get_config()
    print("Starting Qard Fund...")
    print(f"Store: {settings.store_url or 'in-memory'}")
    print(f"API available at: http://localhost:{settings.api_port}")
    print(f"Documentation at: http://localhost:{settings.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Qard Fund...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
