#!/usr/bin/env python3
"""Z-Wave multi-channel to MQTT bridge."""

import asyncio
import logging
import signal
import sys

import yaml

from multichannel2mqtt_app import Multichannel2MQTT, _load_config

logger = logging.getLogger(__name__)


async def main(config):
    """Main entry point."""
    app = Multichannel2MQTT(config)
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    async def runner():
        try:
            await app.start()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Bridge stopped: {e}", exc_info=True)
        finally:
            await app.stop()
            stop_event.set()

    task = loop.create_task(runner())

    def _shutdown():
        if not task.done():
            logger.info("Shutting down...")
            task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _shutdown)
        except NotImplementedError:
            pass

    await stop_event.wait()


def run():
    path = sys.argv[1] if len(sys.argv) > 1 else None
    try:
        config = _load_config(path) if path else _load_config()
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    level = str((config.get("logging") or {}).get("level", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(main(config))


if __name__ == "__main__":
    run()
