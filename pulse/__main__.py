"""
pulse.__main__ — Entry point for ``python -m pulse``
=====================================================

Commands:

* ``serve`` — run the API with uvicorn on ``api_port`` from ``config.yaml``.
* ``init-db`` — create every table (dev/test; production uses Alembic).
* ``sweep <name>`` — run one cleanup sweep, or ``all`` of them.  This is
  what the external scheduler invokes.

Run with::

    python -m pulse serve
    python -m pulse init-db
    python -m pulse sweep cleanup_expired_indicators
    python -m pulse sweep all
"""

from __future__ import annotations

import argparse
import logging
import sys

import uvicorn
from dotenv import load_dotenv

from pulse.config import load_config
from pulse.database.engine import create_db_engine, init_db
from pulse.engine.store import ReactiveStore
from pulse.services import sweep_service

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("pulse")


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m pulse")
    parser.add_argument(
        "--config", default=None,
        help="Path to config.yaml (defaults to $PULSE_CONFIG or ./config.yaml)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")

    commands.add_parser("init-db", help="Create all tables")

    sweep = commands.add_parser("sweep", help="Run a cleanup sweep")
    sweep.add_argument("name", choices=[*sweep_service.SWEEPS, "all"])
    return parser


def main(argv: list[str] | None = None) -> int:
    """Bootstrap the store and run one command.  Returns the exit code."""
    args = _parser().parse_args(argv)

    # 1. Environment variables (secrets).
    load_dotenv()

    if args.command == "serve":
        try:
            cfg = load_config(args.config)
        except (FileNotFoundError, KeyError) as exc:
            logger.critical("Cannot serve without a valid config: %s", exc)
            return 1
        logger.info("Serving %s on %s:%d", cfg.service_name, args.host, cfg.api_port)
        uvicorn.run("pulse.api.main:app", host=args.host, port=cfg.api_port)
        return 0

    # 2. Database.
    try:
        engine = create_db_engine()
    except RuntimeError as exc:
        logger.critical("%s", exc)
        return 1

    if args.command == "init-db":
        init_db(engine)
        return 0

    # 3. Soft configuration.  Sweeps fall back to built-in lifetimes.
    try:
        cfg = load_config(args.config)
        logger.info("Config loaded — Service: %s", cfg.service_name)
    except FileNotFoundError:
        if args.config is not None:
            logger.critical("Configuration file not found: %s", args.config)
            return 1
        cfg = None

    store = ReactiveStore(engine)
    try:
        if args.name == "all":
            results = sweep_service.run_all_sweeps(store, config=cfg)
            logger.info("All sweeps complete — %s", results)
        else:
            sweep_service.run_sweep(store, args.name, config=cfg)
    except Exception:
        logger.exception("Sweep %s failed", args.name)
        return 1
    finally:
        store.close()
        engine.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
