"""Drop and recreate all database tables, optionally wiping the local blob store."""

from __future__ import annotations

import argparse
import asyncio
import os
import shutil
import sys
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from negosyo.config import settings
from negosyo.database import dispose_engine, drop_db, init_db


def _purge_blobs() -> None:
    folder = Path(settings.local_blob_path)
    if folder.exists():
        shutil.rmtree(folder, ignore_errors=True)
        print(f"Removed local blobs under {folder}.")
    else:
        print("No local blobs found.")


async def _reset_db() -> None:
    print("Dropping all tables...")
    await drop_db()
    print("Creating all tables...")
    await init_db()
    await dispose_engine()
    print("Database reset complete.")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reset the local database and optionally the local blob store.")
    parser.add_argument(
        "--purge-blobs",
        action="store_true",
        help="Also delete uploaded photos and interviews kept by the local filesystem store.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    if settings.environment == "production":
        print("Refusing to reset a production database.")
        return 1
    if args.purge_blobs:
        _purge_blobs()
    asyncio.run(_reset_db())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
