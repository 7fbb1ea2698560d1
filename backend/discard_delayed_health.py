"""
Rewrite a history file without the health events that would have been
discarded had delaying been enabled when they were received.

Usage:
    python discard_delayed_health.py [--delay MINUTES] [--types T1,T2] [--history FILE] output_file

Every record is replayed through an event manager in discard mode with
its timers switched off, so the run takes no longer than reading the file.
The input file is never modified.
"""

import argparse
import logging
import sys
from typing import List, Optional

from db import write_history
from feed import FeedPublisher
from render import RenderContext
from repo_events import HistoryRepo
from service_events import EventManager
from settings import Settings, settings
from timers import VirtualScheduler

logger = logging.getLogger("discard")


def discard_resolved(config: Settings) -> HistoryRepo:
    """Replay `config.history_file` and return the purged history."""

    history = HistoryRepo(config.history_file)
    history.load()
    original = list(history.records)
    history.replace([])

    feed = FeedPublisher(config, RenderContext())
    manager = EventManager(config, history, feed, VirtualScheduler())
    manager.install_delay_timeouts = False

    for event in original:
        history.add(event)
        manager.process_new(event)

    logger.info(f"Done, purged {len(original) - len(history)} events")
    return history


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--delay", type=int, default=None,
                        help="override the configured health delay (minutes)")
    parser.add_argument("--types", default=None,
                        help="comma separated health types to delay instead of FEED_HEALTH_DELAY_TYPES")
    parser.add_argument("--history", default=None,
                        help="history file to read instead of HISTORY_FILE")
    parser.add_argument("output_file", help="modified history is written to this file")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)-5s %(name)-7s %(message)s")
    args = parse_args(argv)

    delay = settings.feed_health_delay if args.delay is None else args.delay
    logger.info(f"output_file: {args.output_file}")
    logger.info(f"delay time: {delay} minutes")
    if delay <= 0:
        logger.info("Delay time is 0 minutes, no work to do.")
        return 0

    config = settings.model_copy(update={
        "feed_health_delay": delay,
        "discard_resolved_health_events": True,
        "history_file": args.history or settings.history_file,
    })
    if args.types is not None:
        config.feed_health_delay_types = [t.strip() for t in args.types.split(",") if t.strip()]
    logger.info(f"delayed health types: {', '.join(config.feed_health_delay_types) or 'none'}")
    history = discard_resolved(config)
    try:
        write_history(args.output_file, history.dump())
    except OSError as e:
        logger.error(f"error writing output file {args.output_file}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
