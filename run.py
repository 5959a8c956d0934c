#!/usr/bin/env python3
"""
Core Vault Entry Point

Starts the FastAPI server with the vault accounting engine.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from core_vault.api import run_server


if __name__ == "__main__":
    print("Starting Core Vault...")
    print("Balances recorded in USD unit of account (6 decimals)")
    print("Audit trail active")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Core Vault...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
