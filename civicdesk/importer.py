# Civic Issue Desk: Seed Data Importer
# Populates MongoDB with the default administrator and demo issues
#
# Usage:  civicdesk-import [--admin-only] [--reset]
#     or: python -m civicdesk.importer

import argparse

from pymongo import MongoClient

from . import config
from .database import ensure_indexes
from .seed.admins import DEFAULT_ADMIN, import_admins
from .seed.issues import ISSUES, import_issues


def main(argv=None):
    parser = argparse.ArgumentParser(description="Seed the Civic Issue Desk database")
    parser.add_argument("--admin-only", action="store_true",
                        help="only create the default administrator")
    parser.add_argument("--reset", action="store_true",
                        help="drop the issues and admins collections first")
    args = parser.parse_args(argv)

    print("=" * 64)
    print("  Civic Issue Desk: Data Importer")
    print("=" * 64)

    print("\n[1/3] Connecting to MongoDB...")
    mongo_client = MongoClient(config.MONGODB_URL)
    db = mongo_client[config.MONGODB_DB]
    print(f"  Connected: {config.MONGODB_URL} / {config.MONGODB_DB}")

    try:
        if args.reset:
            for coll_name in ["issues", "admins"]:
                db[coll_name].drop()
            print("  Dropped: issues, admins")
        ensure_indexes(db)

        print("\n[2/3] Administrators")
        n_admins = import_admins(db)

        n_issues = 0
        if not args.admin_only:
            print("\n[3/3] Issues")
            n_issues = len(import_issues(db))
    finally:
        mongo_client.close()

    print("\n" + "=" * 64)
    print("  IMPORT COMPLETE")
    print("=" * 64)
    print(f"  Administrators created: {n_admins}")
    print(f"  Issues:                 {n_issues} of {len(ISSUES)}")
    print()
    print("  Admin credentials:")
    print(f"    {DEFAULT_ADMIN['email']} / {DEFAULT_ADMIN['password']}")
    print("=" * 64)


if __name__ == "__main__":
    main()
