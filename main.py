#!/usr/bin/env python3
"""
Lawlzer auth service - OAuth login (Google, Discord, GitHub) with server-side sessions.
"""

import argparse
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep lawlzer imports lazy (inside functions) so `--migrate` and `--list-providers`
# don't build the HTTP app.
#


def list_providers() -> None:
    """Print which providers are configured and where they call back to."""
    from lawlzer.auth.config import SUPPORTED_PROVIDERS, load_auth_config

    cfg = load_auth_config()
    for name in SUPPORTED_PROVIDERS:
        creds = cfg.credentials(name)
        status = "enabled" if creds.enabled else "disabled"
        print(f"{name:<8} {status:<9} {creds.redirect_uri or '-'}")


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Lawlzer auth service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Apply pending database migrations
  python main.py --migrate

  # Show which migrations are applied
  python main.py --migration-status

  # Run the HTTP server
  python main.py --serve --port 8080
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the auth HTTP server")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")
    parser.add_argument("--migrate", action="store_true", help="Apply pending Postgres migrations and exit")
    parser.add_argument(
        "--migration-status", action="store_true", help="List applied and pending migrations and exit"
    )
    parser.add_argument(
        "--list-providers", action="store_true", help="Show which OAuth providers are configured and exit"
    )

    args = parser.parse_args()

    try:
        if args.migrate:
            from lawlzer.storage.migrate import main as migrate_main

            raise SystemExit(migrate_main([]))

        if args.migration_status:
            from lawlzer.storage.migrate import main as migrate_main

            raise SystemExit(migrate_main(["--status"]))

        if args.list_providers:
            list_providers()
            return

        if args.serve:
            from lawlzer.api.server import run as run_server

            run_server(host=args.host, port=args.port)
            return

        parser.print_help()

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
