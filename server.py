#!/usr/bin/env python3
"""
Campus Wheels Backend Server

Entry point for the FastAPI application. The application itself lives in
the campuswheels/ package.
"""

import os

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "campuswheels.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8000)),
        reload=os.environ.get("ENVIRONMENT", "development") == "development",
        log_level="info"
    )
