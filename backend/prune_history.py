#!/usr/bin/env python3
"""
prune_history.py

Removes old rows from the append-only history table (job runs, workflow
executions, notifications, action outcomes). Only applies to the SQL
storage backend.

Usage:
    # Dry run (shows what would be deleted, no changes):
    python prune_history.py

    # Keep 30 days instead of the default 90, only notifications:
    python prune_history.py --days 30 --stream notifications

    # Actually delete:
    python prune_history.py --commit

Run from backend/ (where scanflow/ lives).
"""

import argparse
import os
import sys
from dataclasses import replace
from datetime import timedelta

# Ensure the package is importable
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from sqlalchemy import func

from scanflow import create_app
from scanflow.config import Settings
from scanflow.extensions import db
from scanflow.models import HistoryEntry, now_utc


def prune(days=90, stream=None, commit=False):
    # Never arm cron timers from a maintenance script
    settings = replace(Settings.from_env(), storage_backend="sql", scheduler_enabled=False)
    app = create_app(settings)

    with app.app_context():
        cutoff = now_utc() - timedelta(days=days)
        query = HistoryEntry.query.filter(HistoryEntry.created_at < cutoff)
        if stream:
            query = query.filter(HistoryEntry.stream == stream)

        counts = (
            db.session.query(HistoryEntry.stream, func.count(HistoryEntry.id))
            .filter(HistoryEntry.id.in_(query.with_entities(HistoryEntry.id)))
            .group_by(HistoryEntry.stream)
            .all()
        )

        if not counts:
            print(f"No history older than {days} days. Nothing to prune.")
            return 0

        total = sum(n for _, n in counts)
        print(f"History rows older than {cutoff:%Y-%m-%d %H:%M} UTC:\n")
        for name, n in sorted(counts):
            print(f"  {name:<24} {n:>8}")

        print(f"\n{'=' * 40}")
        print(f"Total: {total} rows to remove")

        if commit:
            deleted = query.delete(synchronize_session=False)
            db.session.commit()
            print(f"\nDONE: {deleted} rows deleted and committed.")
            return deleted

        db.session.rollback()
        print("\nDRY RUN: no changes made. Run with --commit to apply.")
        return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Prune old automation history rows.")
    parser.add_argument("--days", type=int, default=90, help="keep rows newer than this many days")
    parser.add_argument("--stream", default=None,
                        help="job_runs | workflow_executions | notifications | actions")
    parser.add_argument("--commit", action="store_true", help="delete instead of reporting")
    args = parser.parse_args()
    prune(days=args.days, stream=args.stream, commit=args.commit)
