#!/usr/bin/env python
"""Upgrade the screenshot metadata schema.

Usage: python scripts/apply_migrations.py [revision] [--sql]

``MIGRATIONS_DATABASE_URL`` (for a role allowed to run DDL) takes precedence
over ``DATABASE_URL``. ``--sql`` prints the statements instead of running them.
"""
import argparse
import logging
import os
from pathlib import Path

from alembic import command
from alembic.config import Config
from dotenv import load_dotenv

logger = logging.getLogger("apply_migrations")


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("revision", nargs="?", default="head")
    parser.add_argument("--sql", action="store_true", help="emit SQL instead of applying it")
    args = parser.parse_args()

    repo_root = Path(__file__).resolve().parents[1]
    env_path = repo_root / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    migrations_url = os.getenv("MIGRATIONS_DATABASE_URL")
    if migrations_url:
        os.environ["DATABASE_URL"] = migrations_url

    config = Config(str(repo_root / "alembic.ini"))
    config.set_main_option("script_location", str(repo_root / "alembic"))
    logger.info("Upgrading email screenshot schema to %s", args.revision)
    command.upgrade(config, args.revision, sql=args.sql)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    main()
