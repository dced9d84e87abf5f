"""
Background Gmail poller.

Polls every user with auto-pull enabled once their configured interval
has elapsed since the last poll. Scheduled polls skip the interactive
throttle but still take the per-user lock, so a manual poll and a
scheduled one never overlap.

Run standalone with `supportq-poll` (or `supportq-poll --once` from cron).
"""

from __future__ import annotations

import argparse
import threading
from datetime import datetime
from typing import Any

from dotenv import load_dotenv

from supportq.config import POLL_DEFAULT_MAX_RESULTS, POLL_SCHEDULER_TICK_SECONDS
from supportq.gmail.sync import poll
from supportq.observability.logging import get_logger
from supportq.observability.telemetry import counter
from supportq.storage.models import UserSettings, utc_now
from supportq.storage.settings_repository import SettingsRepository
from supportq.utils.redaction import redact

logger = get_logger(__name__)


def is_due(user_settings: UserSettings, now: datetime) -> bool:
    if user_settings.last_poll_at is None:
        return True
    elapsed = (now - user_settings.last_poll_at).total_seconds()
    return elapsed >= user_settings.gmail_polling_interval_sec


def poll_all_users(
    max_results: int = POLL_DEFAULT_MAX_RESULTS,
    now: datetime | None = None,
    due_only: bool = False,
) -> list[dict[str, Any]]:
    """
    Poll every auto-pull user (optionally only those whose interval elapsed).

    Returns:
        One {"user_id", ...Result} dict per user polled
    """
    now = now or utc_now()
    results: list[dict[str, Any]] = []
    for user_settings in SettingsRepository().list_auto_pull():
        if due_only and not is_due(user_settings, now):
            continue
        result = poll(user_settings.user_id, max_results, throttle=False)
        if not result.ok:
            counter("gmail.scheduler.poll_failed")
            logger.warning(
                "Scheduled poll for %s failed: %s", redact(user_settings.user_id), result.code
            )
        results.append({"user_id": user_settings.user_id, **result.to_dict()})
    return results


class PollScheduler:
    """Ticks every tick_seconds and polls users that are due."""

    def __init__(
        self,
        tick_seconds: float = POLL_SCHEDULER_TICK_SECONDS,
        max_results: int = POLL_DEFAULT_MAX_RESULTS,
    ):
        self.tick_seconds = tick_seconds
        self.max_results = max_results
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self, now: datetime | None = None) -> list[dict[str, Any]]:
        return poll_all_users(self.max_results, now=now, due_only=True)

    def run_forever(self) -> None:
        logger.info("Gmail poll scheduler started (tick=%ss)", self.tick_seconds)
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                # Keep the loop alive across transient DB or network failures
                counter("gmail.scheduler.tick_failed")
                logger.exception("Scheduler tick failed")
            self._stop.wait(self.tick_seconds)
        logger.info("Gmail poll scheduler stopped")

    def start(self) -> threading.Thread:
        """Run in a daemon thread (used by the API when enabled)."""
        self._thread = threading.Thread(target=self.run_forever, daemon=True, name="gmail-poller")
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        self._stop.set()


def main() -> None:
    parser = argparse.ArgumentParser(description="Poll Gmail for users with auto-pull enabled")
    parser.add_argument("--once", action="store_true", help="Poll due users once and exit")
    parser.add_argument(
        "--all",
        action="store_true",
        help="With --once, poll every auto-pull user regardless of interval",
    )
    parser.add_argument("--max-results", type=int, default=POLL_DEFAULT_MAX_RESULTS)
    parser.add_argument("--tick", type=float, default=POLL_SCHEDULER_TICK_SECONDS)
    args = parser.parse_args()

    load_dotenv()
    from supportq.infrastructure.database import init_database

    init_database()

    if args.once:
        results = poll_all_users(args.max_results, due_only=not args.all)
        logger.info("Polled %d users", len(results))
        return

    try:
        PollScheduler(tick_seconds=args.tick, max_results=args.max_results).run_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
