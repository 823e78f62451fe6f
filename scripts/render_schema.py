#!/usr/bin/env python3
"""Emit the Postgres DDL for the events/documents/images store."""

from __future__ import annotations

import argparse

from fia_docs.services.schema import DROP_SQL, SCHEMA_SQL


def render_sql(*, drop: bool) -> str:
    header = "-- FIA documents store schema\n-- Run in a privileged Postgres session; statements are idempotent.\n"
    body = SCHEMA_SQL.strip() + "\n"
    if drop:
        return header + DROP_SQL.strip() + "\n\n" + body
    return header + body


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL that creates the ingester tables.")
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Prepend drop statements (development resets only)",
    )
    args = parser.parse_args()
    print(render_sql(drop=args.drop))


if __name__ == "__main__":
    main()
