"""Validate a playtime config file and print the effective milestone table.

Usage:
  python tools/check_config.py --config config/playtime.json
  python tools/check_config.py --config config/playtime.json --at 310

With --at, also shows which milestones a player online for that many
seconds would have earned in one scan.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

from playtime.session.clock import ManualClock
from playtime.session.config import ConfigError, ConfigSource
from playtime.session.durations import format_threshold
from playtime.session.milestones import MilestoneTracker
from playtime.session.registry import SessionRegistry
from playtime.storage.memory import MemoryRoster


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", required=True)
    ap.add_argument("--at", type=int, default=None, help="simulate a session of this many seconds")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    try:
        cfg = ConfigSource(path=os.path.abspath(args.config), env={}).load()
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    print(f"cache TTL: {cfg.cache_ttl_ms}ms")
    print(f"milestones: {'enabled' if cfg.milestones_enabled else 'disabled'}, every {cfg.check_interval_sec}s")
    for m in cfg.milestones:
        print(f"  {m.milestoneId:<20} {format_threshold(m.thresholdSec):>8}  {len(m.commands)} command(s)")

    if args.at is not None:
        clock = ManualClock()
        roster = MemoryRoster()
        registry = SessionRegistry()
        tracker = MilestoneTracker(registry, roster, milestones=cfg.milestones)
        roster.add("preview", "preview")
        registry.start("preview", clock.now())
        clock.advance(max(0, args.at) * 1000)
        grants = tracker.scan(clock.now())
        print(f"at {format_threshold(args.at)}: {', '.join(g.milestone.milestoneId for g in grants) or 'nothing'}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
