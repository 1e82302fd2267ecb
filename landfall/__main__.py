"""Command entry point: ``landfall <instance-id> [--profile NAME]``."""

from __future__ import annotations

import argparse
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger
from rich.console import Console
from rich.markup import escape

from landfall.cloud import EC2ControlPlane
from landfall.config import parse_tags, resolve_profile
from landfall.exceptions import LandfallError
from landfall.logging import LogConfig, _setup_logging, _teardown_logging
from landfall.orchestrator import ProvisioningOrchestrator
from landfall.types import Handoff

log = logger.bind(component="cli")


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="landfall",
        description="Wait for a new EC2 instance, tag it and confirm it is reachable",
    )
    parser.add_argument("instance_id", help="Id of the instance that was just launched")
    parser.add_argument("--profile", default=None, help="Profile from landfall.toml")
    parser.add_argument("--config-dir", type=Path, default=None, help="Directory holding landfall.toml")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument("--log-file", default=None)
    parser.add_argument(
        "--tag",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra tag, may be repeated",
    )
    return parser


def _describe(handoff: Handoff) -> str:
    target = f"{handoff.user}@{handoff.address}:{handoff.port}" if handoff.user else f"{handoff.address}:{handoff.port}"
    via = f" via {handoff.gateway}" if handoff.gateway else ""
    return f"{handoff.instance_id} is reachable over {handoff.protocol.value} at {target}{via}"


def main(argv: Sequence[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    console = Console(highlight=False, soft_wrap=True)
    handler_ids = _setup_logging(LogConfig(level=args.log_level, file=args.log_file))

    try:
        config = resolve_profile(args.profile, project_dir=args.config_dir)
        if args.tag:
            config = replace(config, tags={**config.tags, **parse_tags(args.tag)})
        handoff = ProvisioningOrchestrator(config, EC2ControlPlane(config.region)).run(args.instance_id)
    except LandfallError as e:
        console.print(f"[red]ERROR:[/red] {escape(str(e))}")
        return 1
    except (ClientError, BotoCoreError) as e:
        log.opt(exception=e).debug("Control-plane call failed")
        console.print(f"[red]ERROR:[/red] EC2 request failed: {escape(str(e))}")
        return 1
    except KeyboardInterrupt:
        console.print()
        console.print("[yellow]Interrupted[/yellow]")
        return 130
    finally:
        _teardown_logging(handler_ids)

    console.print()
    console.print(f"[green]{escape(_describe(handoff))}[/green]")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
