#!/usr/bin/env python
"""
Command-line interface for WikiNexus
"""

import argparse
import sys

from wikinexus.version_info import __version__, __build_timestamp__, __build_type__


def print_version():
    """Print version information."""
    print(f"WikiNexus v{__version__}")
    print(f"Build: {__build_timestamp__}")
    print(f"Build Type: {__build_type__}")


def start_server(args):
    """Start the Flask server."""
    from wikinexus.app import create_app

    overrides = {}
    if args.debug:
        overrides['debug'] = True
    app = create_app(overrides)

    host = args.host
    port = args.port or 8000

    print(f"Starting WikiNexus v{__version__}")
    print(f"Server: http://{host}:{port}")
    print(f"API: http://{host}:{port}/api/documents")
    print("Press Ctrl+C to stop")
    print()

    app.run(host=host, port=port, debug=args.debug)


def init_db(args):
    """Create the database tables (create_app does this on startup)."""
    from wikinexus.app import create_app

    app = create_app()
    print(f"Database ready: {app.config['SQLALCHEMY_DATABASE_URI']}")
    print(f"Uploads folder: {app.config['UPLOAD_FOLDER']}")


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description=f'WikiNexus v{__version__}',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  wikinexus --version              Show version information
  wikinexus start                  Start server on 0.0.0.0:8000
  wikinexus start --port 8080      Start server on port 8080
  wikinexus --debug start          Start server in debug mode
  wikinexus init-db                Create the database tables
        """
    )

    parser.add_argument(
        '--version', '-v',
        action='store_true',
        help='Show version information'
    )

    # Bind to all interfaces so the wiki is reachable from other machines
    default_host = '0.0.0.0'

    parser.add_argument(
        '--host',
        type=str,
        default=default_host,
        help=f'Host to bind to (default: {default_host})'
    )
    parser.add_argument(
        '--port', '-p',
        type=int,
        default=8000,
        help='Port to bind to (default: 8000)'
    )
    parser.add_argument(
        '--debug', '-d',
        action='store_true',
        help='Run in debug mode'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')
    subparsers.add_parser('start', help='Start the wiki server')
    subparsers.add_parser('init-db', help='Create the database tables')

    args = parser.parse_args(argv)

    if args.version:
        print_version()
        return 0

    if args.command == 'init-db':
        try:
            init_db(args)
            return 0
        except Exception as e:
            print(f"Error initializing database: {e}", file=sys.stderr)
            return 1

    # Default behavior: Start Server
    if args.command == 'start' or args.command is None:
        try:
            start_server(args)
            return 0
        except KeyboardInterrupt:
            print("\nServer stopped.")
            return 0
        except Exception as e:
            if args.debug:
                import traceback
                traceback.print_exc()
            print(f"Error starting server: {e}", file=sys.stderr)
            return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
