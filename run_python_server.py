#!/usr/bin/env python3
"""
Standalone script to run the import API locally
"""
import os
import sys
from pathlib import Path

# Modules live next to this script
current_dir = Path(__file__).parent
sys.path.insert(0, str(current_dir))

if __name__ == "__main__":
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 5000))
    reload = os.getenv("NODE_ENV", "development") == "development"

    print(f"Starting Seller Analytics API on {host}:{port} (reload={reload})")
    print(f"Database: {'DATABASE_URL' if os.getenv('DATABASE_URL') else 'in-memory sqlite'}")
    print(f"API docs: http://{host}:{port}/api/docs")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info" if not reload else "debug"
    )
