#!/usr/bin/env python
"""
Run the Crosswind API locally.

Run: python run_api.py

Then open browser: http://localhost:8000/docs
"""
import uvicorn

from crosswind.config import config

if __name__ == "__main__":
    uvicorn.run(
        "crosswind.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
