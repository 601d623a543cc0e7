#!/usr/bin/env python3
"""
Startup script for FitMirror Try-On API
Supports different deployment scenarios and configurations
"""

import sys
import argparse
import uvicorn
from dotenv import load_dotenv


def main():
    parser = argparse.ArgumentParser(description="Start FitMirror Try-On API")
    parser.add_argument("--host", help="Host to bind to")
    parser.add_argument("--port", type=int, help="Port to bind to")
    parser.add_argument("--workers", type=int, help="Number of worker processes")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument("--config", help="Path to .env file")

    args = parser.parse_args()

    # Load environment variables before config is imported
    if args.config:
        load_dotenv(args.config, override=True)

    from config import config

    host = args.host or config.host
    port = args.port or config.port
    workers = args.workers or config.workers
    reload = args.reload or config.reload

    # Validate configuration
    warnings = config.validate()
    if warnings:
        print("⚠️  Configuration warnings:")
        for warning in warnings:
            print(f"   - {warning}")
        print()

    # Print startup information
    print("🎯 FitMirror Try-On API")
    print(f"   Version: {config.version}")
    print(f"   Host: {host}:{port}")
    print(f"   Workers: {workers}")
    print(f"   Try-on spaces: {', '.join(f'{k}={v}' for k, v in config.tryon_spaces.items())}")
    print(f"   Rate limit: {config.rate_limit_requests} req / {config.rate_limit_window}s")
    print(f"   File size limit: {config.max_upload_mb}MB")
    print()

    # Start the server
    try:
        uvicorn.run(
            "main:app",
            host=host,
            port=port,
            workers=workers if not reload else 1,
            reload=reload,
            log_level=config.log_level.lower(),
            access_log=True,
            use_colors=True
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down gracefully...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
