from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from pathlib import Path

from callrelay.server.config import ServerConfig, load_config
from callrelay.server.runtime import ServerRuntime

log = logging.getLogger("callrelay.cmd.server")


def _stop_on_signals(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # not available on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)


async def _serve(config: ServerConfig) -> None:
    stop_event = asyncio.Event()
    _stop_on_signals(stop_event)
    log.info("Relay on %s; send SIGINT or SIGTERM to stop", config.listen)
    await ServerRuntime(config).run_until(stop_event)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="WebRTC call-signaling relay server")
    parser.add_argument("--config", help="Path to server YAML config")
    parser.add_argument("--listen", help="HOST:PORT to bind (overrides config)")
    parser.add_argument("--log-level", help="Logging level (overrides config)")
    args = parser.parse_args(argv)

    try:
        config = load_config(Path(args.config) if args.config else None)
        overrides = {k: v for k, v in (("listen", args.listen), ("log_level", args.log_level)) if v}
        if overrides:
            config = ServerConfig(**{**config.model_dump(), **overrides})
    except (OSError, ValueError) as exc:
        parser.error(str(exc))

    logging.basicConfig(level=config.log_level_no, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        log.info("Server stopped manually")


if __name__ == "__main__":
    main()
