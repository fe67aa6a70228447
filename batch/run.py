#!/usr/bin/env python3
"""
CLI entry point for the recomputation job.

Usage:
    # Run the nightly job
    python -m batch.run configs/nightly.yaml

    # List past runs
    python -m batch.run --list

    # Show the top of the priority queue / today's briefing
    python -m batch.run configs/nightly.yaml --queue 20
    python -m batch.run configs/nightly.yaml --briefing

    # Generate sample data and preview its scores
    python -m batch.run --sample 500 data/attributes.csv
    python -m batch.run configs/nightly.yaml --preview
"""

import argparse
import logging
import signal
import sys
import threading

from .config import JobConfig
from .runner import JobRunner

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Retention risk recomputation job",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m batch.run configs/nightly.yaml
  python -m batch.run configs/nightly.yaml --workers 4
  python -m batch.run --list
  python -m batch.run --sample 500 data/attributes.csv
        """,
    )

    parser.add_argument(
        "config",
        nargs="?",
        help="Path to YAML job config",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Clients scored concurrently (overrides config)",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List all past runs",
    )
    parser.add_argument(
        "--queue",
        type=int,
        nargs="?",
        const=20,
        default=None,
        metavar="N",
        help="Print the top N of the priority queue instead of running",
    )
    parser.add_argument(
        "--briefing",
        action="store_true",
        help="Print today's briefing instead of running",
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Score the attribute file with component breakdown, no writes",
    )
    parser.add_argument(
        "--sample",
        nargs=2,
        metavar=("N", "PATH"),
        help="Write N synthetic clients to PATH",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Debug logging",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
    )

    runner = JobRunner()

    # Sample data
    if args.sample:
        n_clients, path = args.sample
        written = runner.write_sample(int(n_clients), path)
        print(f"Wrote {n_clients} clients to {written}")
        return 0

    # List runs
    if args.list:
        df = runner.list_runs()
        if df.empty:
            print("No runs found.")
        else:
            print(df.to_string(index=False))
        return 0

    if not args.config:
        parser.print_help()
        return 1

    path = runner.resolve(args.config)
    if not path.exists():
        print(f"Config not found: {args.config}")
        return 1
    config = JobConfig.from_yaml(path)

    if args.preview:
        result = runner.preview(config)
        print(result.summary().to_string())
        print("\nComponent breakdown:\n")
        print(result.component_breakdown().to_string())
        return 0

    if args.queue is not None:
        engine = runner.build_engine(config)
        entries = engine.priority_queue(limit=args.queue)
        if not entries:
            print("Queue is empty.")
        for entry in entries:
            contact = "never" if entry.days_since_contact is None else f"{entry.days_since_contact}d"
            alert = f" [{entry.alert_level}]" if entry.alert_level else ""
            print(f"{entry.rank:>4}. {entry.client_id:<16} {entry.score:>3} {entry.category.key:<9} {contact:>6}{alert}")
        return 0

    if args.briefing:
        briefing = runner.build_engine(config).briefing()
        print(f"{briefing.greeting}!\n")
        print(briefing.narrative)
        for insight in briefing.insights:
            print(f"  * {insight}")
        for item in briefing.action_items:
            print(f"  - {item}")
        return 0

    # Run the job; SIGTERM from the scheduler stops it between clients
    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())

    try:
        print(f"\n{'=' * 60}")
        print(f"Running: {config.name}")
        print("=" * 60)
        job = runner.run(config, max_workers=args.workers, stop_event=stop)
    except Exception as e:
        print(f"ERROR: {e}")
        return 1

    print(job.summary())
    print(f"\nRun log: {job.log_path}")
    return 0 if job.ok else 2


if __name__ == "__main__":
    sys.exit(main())
