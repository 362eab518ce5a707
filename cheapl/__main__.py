"""Command line entry point: ``python -m cheapl``."""

from __future__ import annotations

import argparse
import signal
import sys
from pathlib import Path

from loguru import logger

from cheapl import __version__
from cheapl.config import Config, load_config
from cheapl.player import CheaplService
from cheapl.sounds.library import SoundLibrary
from cheapl.sounds.output import open_output
from cheapl.xpl.heartbeat import HeartbeatSchedule
from cheapl.xpl.service import ApplicationService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cheapl",
        description="Play a sound file for every X10 on/off command seen on the xPL bus.",
    )
    parser.add_argument("--config", type=Path, help="JSON configuration file")
    parser.add_argument("--sounds", help="directory with on<device>.wav/off<device>.wav files")
    parser.add_argument("--id", dest="application_id", help="xPL application id")
    parser.add_argument("--verbose", "-v", action="store_true", help="log debug output")
    parser.add_argument("--version", action="version", version=f"cheapl {__version__}")
    return parser


def build_service(config: Config) -> CheaplService:
    library = SoundLibrary.from_directory(config.sounds.directory)
    output = open_output(config.sounds.device)
    xpl = config.xpl
    try:
        service = ApplicationService(
            xpl.application_id,
            xpl.version,
            broadcast_address=xpl.broadcast_address,
            hub_port=xpl.hub_port,
            bind_address=xpl.bind_address,
            schedule=HeartbeatSchedule(
                discovery_period=xpl.discovery_period,
                lonely_period=xpl.lonely_period,
                heartbeat_period=xpl.heartbeat_period,
                discovery_window=xpl.discovery_window,
            ),
        )
    except OSError:
        output.close()
        raise
    return CheaplService(service, library, output, period_size=config.sounds.period_size)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "INFO")

    config = load_config(args.config)
    if args.sounds:
        config.sounds.directory = args.sounds
    if args.application_id:
        config.xpl.application_id = args.application_id

    try:
        cheapl = build_service(config)
    except OSError as exc:
        logger.error(f"[Cheapl] startup failed: {exc}")
        return 1

    signal.signal(signal.SIGTERM, lambda *_: cheapl.service.stop())
    try:
        cheapl.run()
    except KeyboardInterrupt:
        pass
    except OSError as exc:
        logger.error(f"[Cheapl] xPL transport failed: {exc}")
        return 1
    finally:
        try:
            cheapl.signoff()
        except OSError as exc:
            logger.warning(f"[Cheapl] sign-off failed: {exc}")
        cheapl.service.close()
        cheapl.output.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
