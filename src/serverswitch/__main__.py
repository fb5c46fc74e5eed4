"""Entry point for `python -m serverswitch` / `serverswitch`.

Subcommands:
    serverswitch            Run the bot (default)
    serverswitch refresh    Refresh every tracked status message once
    serverswitch shutdown   Run the nightly shutdown policy once
"""

from __future__ import annotations

import argparse
import asyncio

from serverswitch.scheduler import DAILY_SHUTDOWN, HOURLY_REFRESH


def _run() -> None:
    from serverswitch.app import ServerSwitchApp

    app = ServerSwitchApp()
    asyncio.run(app.run())


def _run_once(job: str) -> None:
    from serverswitch.app import ServerSwitchApp

    app = ServerSwitchApp()
    asyncio.run(app.run_once(job))


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="serverswitch",
        description="Slack bot for viewing and toggling EC2 server power state",
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("refresh", help="Refresh every tracked status message and exit")
    sub.add_parser("shutdown", help="Stop running servers, refresh messages, and exit")

    args = parser.parse_args()

    match args.command:
        case "refresh":
            _run_once(HOURLY_REFRESH)
        case "shutdown":
            _run_once(DAILY_SHUTDOWN)
        case _:
            _run()


if __name__ == "__main__":
    main()
