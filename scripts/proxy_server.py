#!/usr/bin/env python3
"""Serve the feed transport proxy."""

import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import uvicorn

from vesper.config.logging_setup import configure_logging
from vesper.proxy.app import app


if __name__ == "__main__":
    configure_logging()
    port = int(os.environ.get("PORT", 8000))

    print("\n" + "="*60)
    print("VESPER FEED PROXY")
    print("="*60)
    print(f"Listening on http://localhost:{port}/api/fetch-feed?url=<feed>")
    print("Press Ctrl+C to stop")
    print("="*60 + "\n")

    uvicorn.run(app, host="0.0.0.0", port=port)
