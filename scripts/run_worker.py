# scripts/run_worker.py
"""
Run the call-processing worker.

Usage:
    python -m scripts.run_worker              # poll forever
    python -m scripts.run_worker --once       # one tick, then exit
    python -m scripts.run_worker --poll-interval 2 --max-jobs 1

SIGINT / SIGTERM finish the current job and stop the loop.
"""

from __future__ import annotations

import argparse
import signal
import threading

from app.db.session import SessionLocal, engine
from app.logging_config import setup_logging
from app.models import Base
from app.worker import Worker


def main() -> None:
    parser = argparse.ArgumentParser(description="Process queued call recordings")
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit")
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between polls (default: WORKER_POLL_INTERVAL_SECONDS)",
    )
    parser.add_argument(
        "--max-jobs",
        type=int,
        default=None,
        help="Jobs to process per tick (default: WORKER_MAX_CONCURRENT_JOBS)",
    )
    args = parser.parse_args()

    log = setup_logging()
    Base.metadata.create_all(bind=engine)

    stop = threading.Event()
    # Sleep on the stop event so a signal cuts the wait short
    worker = Worker.from_settings(
        SessionLocal,
        poll_interval=args.poll_interval,
        max_jobs_per_tick=args.max_jobs,
        sleep=stop.wait,
    )

    if args.once:
        processed = worker.run_once()
        log.info("Processed %s job(s)", processed)
        return

    def _stop(signum, _frame):
        log.info("Received signal %s, shutting down after the current job", signum)
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    worker.run_forever(stop)


if __name__ == "__main__":
    main()
