"""
Load or wipe development data.

    python import_dev_data.py --import [--file dev-data/tours.json]
    python import_dev_data.py --delete
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

from pymongo.database import Database

import factory
from database import db, ensure_indexes
from resources import TOURS

logger = logging.getLogger("import_dev_data")

DEFAULT_FILE = Path(__file__).parent / "dev-data" / "tours.json"


def import_tours(database: Database, tours: List[Dict[str, Any]]) -> int:
    ensure_indexes(database)
    for tour in tours:
        factory.create(database, TOURS, tour)
    return len(tours)


def delete_data(database: Database) -> None:
    for name in ("tours", "reviews", "users"):
        database[name].delete_many({})


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument("--import", dest="do_import", action="store_true", help="load tours from --file")
    action.add_argument("--delete", action="store_true", help="remove tours, reviews and users")
    parser.add_argument("--file", type=Path, default=DEFAULT_FILE)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    if args.delete:
        delete_data(db)
        logger.info("Data deleted successfully!")
        return 0

    tours = json.loads(args.file.read_text(encoding="utf-8"))
    count = import_tours(db, tours)
    logger.info("Loaded %d tours successfully!", count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
