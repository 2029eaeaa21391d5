"""Main entry point for the G-Match deployer."""

import argparse
import asyncio
import sys
from typing import List, Optional

import structlog

from .config import DeployConfig
from .deployer import Deployer
from .errors import CommandError, DeployError, InvalidTarget
from .utils.logging import setup_logging

logger = structlog.get_logger()

HELM_COMMANDS = ("install", "upgrade", "rollback", "status", "uninstall", "template")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gmatch-deploy",
        description=(
            "Deploy G-Match to Kubernetes. Helm commands: install, upgrade [tag], "
            "rollback [revision], status [scope], uninstall, template. "
            "Component deploys: all|django|web|matcher|infra|mysql|redis|migrate [tag]. "
            "Any other first argument is taken as an image tag for a full deploy."
        ),
    )
    parser.add_argument("command", nargs="?", default="all", help="Command, component or tag")
    parser.add_argument("argument", nargs="?", default=None, help="Tag, revision or scope")
    parser.add_argument("--namespace", default=None, help="Kubernetes namespace")
    parser.add_argument("--release", default=None, help="Helm release name")
    parser.add_argument(
        "--no-auto-rollback",
        action="store_true",
        help="Do not revert application stages on failure",
    )
    parser.add_argument("--log-level", default=None, help="Logging level")
    return parser


def load_config(args: argparse.Namespace) -> DeployConfig:
    """Environment config with command-line overrides applied."""
    config = DeployConfig()
    overrides = {}
    if args.namespace:
        overrides["namespace"] = args.namespace
    if args.release:
        overrides["release_name"] = args.release
    if args.no_auto_rollback:
        overrides["auto_rollback"] = False
    if args.log_level:
        overrides["log_level"] = args.log_level
    return config.model_copy(update=overrides) if overrides else config


async def dispatch(deployer: Deployer, command: str, argument: Optional[str]):
    """Route a command to the deployer."""
    if command == "install":
        await deployer.install()
    elif command == "upgrade":
        await deployer.upgrade(argument)
    elif command == "rollback":
        revision = None
        if argument is not None:
            try:
                revision = int(argument)
            except ValueError as e:
                raise InvalidTarget(f"Revision must be a number, got '{argument}'") from e
        await deployer.rollback(revision)
    elif command == "status":
        await deployer.status(argument or "all")
    elif command == "uninstall":
        await deployer.uninstall()
    elif command == "template":
        await deployer.template()
    else:
        await deployer.deploy(command, argument)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    # Load configuration
    config = load_config(args)

    # Setup logging
    setup_logging(config.log_level, config.log_format.value)

    deployer = Deployer(config)

    try:
        asyncio.run(dispatch(deployer, args.command, args.argument))
    except KeyboardInterrupt:
        logger.warning(
            "deploy.interrupted",
            hint="cluster state left as-is; run 'status' to inspect",
        )
        return 130
    except DeployError as e:
        logger.error("deploy.failed", error_type=type(e).__name__, error=str(e))
        return e.exit_code
    except CommandError as e:
        logger.error("deploy.failed", error_type=type(e).__name__, error=str(e))
        return 1

    logger.info("deploy.complete", command=args.command)
    return 0


if __name__ == "__main__":
    sys.exit(main())
