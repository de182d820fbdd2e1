import logging
import threading
import time


def sweep_once(typing_tracker) -> int:
    """Expire stale typing entries. Returns how many were cleared."""
    expired = typing_tracker.sweep()
    if expired:
        logging.debug("[JANITOR] expired %d typing indicator(s)", len(expired))
    return len(expired)


def start_janitor(settings: dict, typing_tracker):
    """Start a lightweight background cleanup loop.

    Clears typing indicators whose client stopped refreshing them (closed
    laptop lid, lost network) without ever sending stop_typing.
    """

    def _loop():
        while True:
            # Re-read settings each cycle so edits take effect live.
            try:
                interval = float(settings.get("janitor_interval_seconds", 2))
            except (TypeError, ValueError):
                interval = 2.0
            interval = max(0.5, min(interval, 60.0))

            try:
                sweep_once(typing_tracker)
            except Exception as e:
                logging.error("[JANITOR] typing sweep error: %s", e)

            time.sleep(interval)

    t = threading.Thread(target=_loop, name="superpaac_janitor", daemon=True)
    t.start()
    return t
