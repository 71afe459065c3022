"""Module entrypoint to run `python -m sqlbroker`."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .config import CONFIG_FILE, load_multi_database_config, register_from_config
from .engine import Engine
from .errors import SqlBrokerError


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run SQL against one or more registered databases.")
    parser.add_argument("--config", type=Path, default=CONFIG_FILE, help="Multi-database TOML file.")
    parser.add_argument(
        "--database",
        action="append",
        default=[],
        help="Target database id (repeat to fan out across several).",
    )
    parser.add_argument("--query", help="Statement to execute. Lists databases when omitted.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    async with Engine() as engine:
        multi = load_multi_database_config(args.config)
        if multi is not None:
            report = register_from_config(engine.registry, multi)
            for name in sorted(report.missing_env):
                print(f"Missing environment variable: {name}", file=sys.stderr)
        else:
            await engine.bootstrap(config_file=args.config)

        if not args.query:
            for summary in engine.list_databases():
                state = "connected" if summary.is_connected else "idle"
                print(f"{summary.id}\t{summary.server}/{summary.database}\t{summary.user}\t{state}")
            return 0

        try:
            if len(args.database) > 1:
                outcomes = await engine.execute_on_multiple_databases(args.query, args.database)
                for outcome in outcomes:
                    record = {
                        "database": outcome.database_id,
                        "success": outcome.success,
                        "data": [dict(row) for row in outcome.result.rows] if outcome.result else outcome.error,
                    }
                    print(json.dumps(record, default=str))
                return 0 if all(outcome.success for outcome in outcomes) else 1
            database_id = args.database[0] if args.database else None
            result = await engine.execute_query(args.query, database_id=database_id)
        except SqlBrokerError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
        for row in result.rows:
            print(json.dumps(dict(row), default=str))
        return 0


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
