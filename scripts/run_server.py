#!/usr/bin/env python3
"""
API server entrypoint - loads .env, validates configuration and serves the
FastAPI app with uvicorn.
"""

import argparse
import sys
from pathlib import Path

import dotenv
dotenv.load_dotenv()

sys.path.insert(0, str(Path(__file__).parent.parent))

import uvicorn

from stuff_search.core.config import API_HOST, API_PORT, DEBUG, validate_config


def main():
    parser = argparse.ArgumentParser(description='Serve the Stuff Search API')
    parser.add_argument('--host', default=API_HOST, help=f'Host to bind to (default: {API_HOST})')
    parser.add_argument('--port', type=int, default=API_PORT, help=f'Port to serve on (default: {API_PORT})')
    parser.add_argument('--reload', action='store_true', help='Reload on code changes (development)')
    args = parser.parse_args()

    issues = validate_config()
    if issues:
        print("❌ Configuration problems:")
        for issue in issues:
            print(f"   - {issue}")
        return 1

    print(f"🔎 Stuff Search API on http://{args.host}:{args.port}")
    if DEBUG:
        print(f"🔧 Debug mode enabled - docs at http://{args.host}:{args.port}/docs")

    uvicorn.run(
        "stuff_search.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="debug" if DEBUG else "info",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
