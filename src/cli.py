#!/usr/bin/env python3
"""
Date Consensus Command Line Interface.

Provides commands for running and managing the prediction service:
    - serve: Start the API server
    - check: Verify installation and configuration
    - info: Display system information
    - seed: Fill the configured ledger with synthetic predictions
    - stats: Print the current aggregate and status as JSON

Usage:
    date-consensus serve [--host HOST] [--port PORT] [--debug]
    date-consensus check
    date-consensus info
    date-consensus seed [--count N] [--seed S]
    date-consensus stats
    date-consensus --version
"""

import argparse
import json
import logging
import os
import random
import sys
from datetime import date, timedelta

from dotenv import load_dotenv

# Ensure src is in path when running from source
if os.path.exists(os.path.join(os.path.dirname(__file__), "prediction_engine.py")):
    sys.path.insert(0, os.path.dirname(__file__))

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

DEFAULT_SEED_COUNT = 150


def _configure_logging():
    from monitoring import configure_logging

    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))


def generate_seed_dates(count: int, reference_date: date, rng: random.Random) -> list[date]:
    """
    Synthetic prediction dates on or after the reference date.

    40% within 90 days, 30% within 90-180 days, 20% within 180-360 days,
    10% whole years out (1-10 years).
    """
    dates = []
    for _ in range(count):
        roll = rng.random()
        if roll < 0.4:
            offset_days = rng.randrange(90)
        elif roll < 0.7:
            offset_days = 90 + rng.randrange(90)
        elif roll < 0.9:
            offset_days = 180 + rng.randrange(180)
        else:
            offset_days = rng.randint(1, 10) * 365
        dates.append(reference_date + timedelta(days=offset_days))
    return dates


def cmd_serve(args):
    """Start the Date Consensus API server."""
    load_dotenv()
    _configure_logging()

    host = args.host or os.getenv("HOST", "0.0.0.0")
    port = args.port or int(os.getenv("PORT", 5000))
    debug = args.debug or os.getenv("FLASK_DEBUG", "").lower() == "true"

    print(f"Starting Date Consensus API server on {host}:{port}")

    from api import create_app

    flask_app = create_app()

    if args.production:
        try:
            import gunicorn.app.base
        except ImportError:
            print("Error: gunicorn not installed. Install with: pip install date-consensus[production]")
            sys.exit(1)

        class StandaloneApplication(gunicorn.app.base.BaseApplication):
            """Gunicorn WSGI application wrapper for production deployment."""

            def __init__(self, app, options=None):
                self.options = options or {}
                self.application = app
                super().__init__()

            def load_config(self):
                for key, value in self.options.items():
                    if key in self.cfg.settings and value is not None:
                        self.cfg.set(key.lower(), value)

            def load(self):
                return self.application

        options = {
            "bind": f"{host}:{port}",
            "workers": args.workers or int(os.getenv("WORKERS", 4)),
            "worker_class": "sync",
            "timeout": 30,
            "accesslog": "-",
            "errorlog": "-",
        }
        StandaloneApplication(flask_app, options).run()
    else:
        flask_app.run(host=host, port=port, debug=debug)


def cmd_check(args):
    """Check installation and configuration."""
    load_dotenv()
    print("Date Consensus Installation Check")
    print("=" * 40)

    checks = []

    try:
        from config import EngineConfig

        config = EngineConfig.from_env()
        if config.identity_salt.strip():
            checks.append(("Engine configuration", "OK"))
        else:
            checks.append(("Engine configuration", "FAIL: IDENTITY_SALT not set"))
    except (ValueError, ImportError) as e:
        checks.append(("Engine configuration", f"FAIL: {e}"))

    try:
        import api  # noqa: F401

        checks.append(("Flask API", "OK"))
    except ImportError as e:
        checks.append(("Flask API", f"FAIL: {e}"))

    try:
        from storage import StorageError, get_ledger_backend

        ledger = get_ledger_backend()
        status = "OK" if ledger.is_available() else "WARN (not available)"
        checks.append((f"Ledger ({ledger.__class__.__name__})", status))
        ledger.close()
    except StorageError as e:
        checks.append(("Ledger", f"FAIL: {e}"))

    from scaling import get_cache

    checks.append((f"Cache ({get_cache().__class__.__name__})", "OK"))

    if os.getenv("TURNSTILE_SECRET_KEY"):
        checks.append(("Bot verification", "OK (Turnstile)"))
    else:
        checks.append(("Bot verification", "SKIP (TURNSTILE_SECRET_KEY not set)"))

    try:
        import redis  # noqa: F401

        checks.append(("Redis support", "OK"))
    except ImportError:
        checks.append(("Redis support", "SKIP (redis not installed)"))

    try:
        import psycopg2  # noqa: F401

        checks.append(("PostgreSQL support", "OK"))
    except ImportError:
        checks.append(("PostgreSQL support", "SKIP (psycopg2 not installed)"))

    print()
    all_ok = True
    for name, status in checks:
        icon = "✓" if status.startswith("OK") else ("○" if "SKIP" in status else "✗")
        print(f"  {icon} {name}: {status}")
        if "FAIL" in status:
            all_ok = False

    print()
    if all_ok:
        print("All checks passed!")
        return 0
    print("Some checks failed. See above for details.")
    return 1


def cmd_info(args):
    """Display system information."""
    import platform

    load_dotenv()
    print("Date Consensus System Information")
    print("=" * 40)
    print(f"Version: {__version__}")
    print(f"Python: {platform.python_version()}")
    print(f"Platform: {platform.platform()}")

    print()
    print("Configuration:")
    print(f"  REFERENCE_DATE: {os.getenv('REFERENCE_DATE', '2026-11-19 (default)')}")
    print(f"  IDENTITY_SALT: {'configured' if os.getenv('IDENTITY_SALT') else 'not set'}")
    print(f"  STORAGE_BACKEND: {os.getenv('STORAGE_BACKEND', 'memory (default)')}")
    print(f"  REDIS_URL: {'configured' if os.getenv('REDIS_URL') else 'not set'}")
    print(f"  DATABASE_URL: {'configured' if os.getenv('DATABASE_URL') else 'not set'}")
    print(f"  TURNSTILE_SECRET_KEY: {'configured' if os.getenv('TURNSTILE_SECRET_KEY') else 'not set'}")
    print(f"  TRUSTED_PROXIES: {os.getenv('TRUSTED_PROXIES') or 'not set (forwarding headers ignored)'}")
    print(f"  CAPACITY_DAILY_LIMIT: {os.getenv('CAPACITY_DAILY_LIMIT', '100000 (default)')}")
    print(f"  LOG_LEVEL: {os.getenv('LOG_LEVEL', 'INFO (default)')}")
    print(f"  LOG_FORMAT: {os.getenv('LOG_FORMAT', 'console (default)')}")

    print()
    print("Ledger:")
    from storage import StorageError, get_ledger_backend

    try:
        with get_ledger_backend() as ledger:
            for key, value in ledger.get_info().items():
                print(f"  {key}: {value}")
    except StorageError as e:
        print(f"  Error: {e}")
        return 1

    return 0


def cmd_seed(args):
    """Submit synthetic predictions through the engine."""
    load_dotenv()
    _configure_logging()

    from api.state import build_engine
    from bot_verification import AllowAllVerifier
    from errors import DuplicateIdentityError

    engine = build_engine(verifier=AllowAllVerifier())
    rng = random.Random(args.seed)
    dates = generate_seed_dates(args.count, engine.config.reference_date, rng)
    dates = [min(d, engine.config.max_date) for d in dates]

    created = duplicates = 0
    for index, predicted in enumerate(dates):
        try:
            engine.submit(f"seed-{args.seed}-{index}", predicted, user_agent="Date Consensus Seeder")
            created += 1
        except DuplicateIdentityError:
            duplicates += 1

    aggregate = engine.read_aggregate()
    print(f"Seeded {created} predictions ({duplicates} already present)")
    print(f"Ledger now holds {aggregate.total_count}; median {aggregate.median_date.isoformat()}")
    engine.ledger.close()
    return 0


def cmd_stats(args):
    """Print aggregate and status as JSON."""
    load_dotenv()

    from api.state import build_engine

    engine = build_engine()
    output = {
        "aggregate": engine.read_aggregate().to_dict(),
        "status": engine.read_status().to_dict(),
        "sentiment": engine.read_sentiment().to_dict(),
    }
    print(json.dumps(output, indent=2))
    engine.ledger.close()
    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="date-consensus",
        description="Date Consensus - community release-date prediction aggregator",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", help="Host to bind to (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, help="Port to bind to (default: 5000)")
    serve_parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    serve_parser.add_argument(
        "--production", action="store_true", help="Use gunicorn for production"
    )
    serve_parser.add_argument("--workers", type=int, help="Number of workers (production mode)")

    subparsers.add_parser("check", help="Check installation and configuration")
    subparsers.add_parser("info", help="Display system information")

    seed_parser = subparsers.add_parser("seed", help="Seed the ledger with synthetic predictions")
    seed_parser.add_argument("--count", type=int, default=DEFAULT_SEED_COUNT,
                             help=f"Number of predictions (default: {DEFAULT_SEED_COUNT})")
    seed_parser.add_argument("--seed", type=int, default=0, help="Random seed (default: 0)")

    subparsers.add_parser("stats", help="Print aggregate, status and sentiment")

    args = parser.parse_args()

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "check":
        sys.exit(cmd_check(args))
    elif args.command == "info":
        sys.exit(cmd_info(args))
    elif args.command == "seed":
        sys.exit(cmd_seed(args))
    elif args.command == "stats":
        sys.exit(cmd_stats(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
