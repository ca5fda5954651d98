#!/usr/bin/env python3
"""
Microfinance Ledger Entry Point

Starts the FastAPI server with the loan and chit fund ledger.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from microfinance_core.api import run_server
from microfinance_core.config import get_config


if __name__ == "__main__":
    settings = get_config()
    print("Starting Microfinance Ledger...")
    print(f"Storage: {settings.database_url}")
    print(f"Grace period: {settings.grace_period_days} days")
    print(f"API available at: http://localhost:{settings.api_port}")
    print(f"Documentation at: http://localhost:{settings.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Microfinance Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
