#!/usr/bin/env python3
"""
Date Consensus API Server Launcher
"""

import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "src"))

from dotenv import load_dotenv

from api import create_app
from monitoring import configure_logging

if __name__ == "__main__":
    load_dotenv()
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))
    app = create_app()
    app.run(
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", 5000)),
        debug=os.getenv("FLASK_DEBUG", "").lower() == "true",
    )
