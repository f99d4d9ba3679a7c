from __future__ import annotations

import logging
import time

from config import Config, load_config
from context import UpdaterContext
from events import UNCAUGHT_ERROR, EventHub, LoggingSubscriber
from telemetry import SpanEventSubscriber, init_telemetry, shutdown_telemetry
from updater import update_database


def run_update(config: Config, events: EventHub, full: bool) -> bool:
    """Run one update cycle; any failure is logged and the next cycle proceeds."""
    context = UpdaterContext.create(config, events)
    try:
        update_database(context, full)
        return True
    except Exception as exc:
        logging.exception("Uncaught error while updating the database")
        events.emit(UNCAUGHT_ERROR, error=exc)
        return False
    finally:
        context.downloader.cleanup()
        context.session.close()


def main_loop() -> None:
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    init_telemetry()

    events = EventHub([LoggingSubscriber(), SpanEventSubscriber()])
    run_number = 0
    try:
        while True:
            full = run_number % config.full_every == 0
            run_update(config, events, full)
            run_number += 1

            if config.run_once:
                break
            logging.info("Waiting for %s minute(s) before next update.", config.update_rate)
            time.sleep(config.update_rate * 60)
    finally:
        shutdown_telemetry()


if __name__ == "__main__":
    main_loop()
