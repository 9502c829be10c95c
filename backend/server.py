#!/usr/bin/env python3
"""
Backend Server Entry Point

Simple uvicorn launcher for the PR Watchdog API.
Can be run directly or imported.

Usage:
    # Development mode with auto-reload
    python backend/server.py

    # Custom host/port
    python backend/server.py --host 0.0.0.0 --port 8080

    # Production mode (no reload)
    python backend/server.py --no-reload

    # Or use uvicorn directly
    uvicorn backend.app:create_app --factory
"""

import argparse


def run_server(host: str = "127.0.0.1", port: int = 8000, reload: bool = False):
    """Start uvicorn with the app factory."""
    import uvicorn
    uvicorn.run(
        "backend.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


def main():
    """Launch the FastAPI backend server."""
    parser = argparse.ArgumentParser(
        description="PR Watchdog API Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Development mode (auto-reload enabled)
  python backend/server.py

  # Custom host/port
  python backend/server.py --host 0.0.0.0 --port 8080

  # Production mode (no reload)
  python backend/server.py --no-reload
        """
    )

    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind the server to (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to run the API server on (default: 8000)"
    )
    parser.add_argument(
        "--no-reload",
        action="store_true",
        help="Disable auto-reload (use for production)"
    )

    args = parser.parse_args()

    print("=" * 80)
    print("PR Watchdog API Server")
    print("=" * 80)
    print(f"Webhook endpoint: http://{args.host}:{args.port}/api/webhooks/github")
    print(f"API docs available at: http://{args.host}:{args.port}/docs")
    print("")
    print("Press Ctrl+C to stop the server")
    print("=" * 80)
    print("")

    run_server(host=args.host, port=args.port, reload=not args.no_reload)


if __name__ == "__main__":
    main()
