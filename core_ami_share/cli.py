"""Command line interface for sharing AMIs across accounts.

Example::

    AWS_PROFILE=staging-ami core-ami-share -v -c example.yaml -p plan.yaml
"""

import argparse
import os
import signal
import sys
import traceback

import darkdetect  # type: ignore
from dotenv import load_dotenv
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

import core_logging as log

from core_ami_share import __version__
from core_ami_share.config import load_config
from core_ami_share.errors import AmiShareError
from core_ami_share.models import ShareParams
from core_ami_share.plan import SharePlan
from core_ami_share.share import ShareAMI

CLI_NAME = "core-ami-share"

log_stream_name = "core-ami-share-cli"

console = Console()

# Detect OS theme and select appropriate theme
if darkdetect.isDark():
    theme = "native"
else:
    theme = "github"


def yprint(data: str, end: str = "\n"):
    console.print(Syntax(data, "yaml", theme=theme), end=end)


def print_summary(plan: SharePlan):
    """Print one row per target account, group, region and selected image."""
    table = Table(title="AMIs to share")
    table.add_column("Account")
    table.add_column("Group")
    table.add_column("Region")
    table.add_column("AMI")

    for account in plan.target_accounts:
        for group in sorted(account.amis):
            for region, images in sorted(account.amis[group].items()):
                image_ids = ", ".join(str(image) for image in images) or "-"
                table.add_row(
                    f"{account.alias} ({account.id})", group, region, image_ids
                )

    console.print(table)


def parse_args(argv: list[str] | None = None) -> dict:
    """Parse the CLI arguments"""

    parser = argparse.ArgumentParser(
        prog=CLI_NAME,
        description=(
            "AWS AMI Share is a utility for sharing AMIs across accounts.\n"
            f"Version={__version__}"
        ),
        formatter_class=argparse.RawTextHelpFormatter,
        epilog=(
            "\nExample:\n"
            "  AWS_PROFILE=staging-ami core-ami-share -v -c example.yaml -p plan.yaml\n"
        ),
    )

    parser.add_argument(
        "-c",
        "--config",
        dest="config",
        metavar="<config>",
        type=str,
        required=True,
        help="(required) Path to the config file.",
    )
    parser.add_argument(
        "-p",
        "--plan",
        dest="plan",
        metavar="<plan>",
        type=str,
        required=True,
        help="(required) Path to output file for plan.",
    )
    parser.add_argument(
        "--no-dry-run",
        dest="no_dry_run",
        action="store_true",
        help=(
            "If specified, it shares AMIs. "
            "Otherwise it just lists target candidates in the plan file."
        ),
    )
    parser.add_argument(
        "--share-snapshots",
        dest="share_snapshots",
        action="store_true",
        help="(optional) Whether to share snapshots attached to AMIs.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        dest="verbose",
        action="store_true",
        help="Enables debug output.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    return vars(parser.parse_args(argv))


def setup_logging(verbose: bool):
    if verbose:
        os.environ["LOG_LEVEL"] = "DEBUG"
    else:
        os.environ.setdefault("LOG_LEVEL", "INFO")
    log.setup(log_stream_name)


def run(
    config: str,
    plan: str,
    no_dry_run: bool = False,
    share_snapshots: bool = False,
    **kwargs,
) -> SharePlan:
    """Load and validate the config, verify the accounts and run the share.

    :raises AmiShareError: On any configuration, authentication, identity or execution
        error
    """
    log.info(
        "Validating config",
        details={"Context": "share-command", "Operation": "validation"},
    )

    share_config = load_config(config)
    share_config.validate_config()

    params = ShareParams(
        config=share_config,
        plan_file=plan,
        no_dry_run=no_dry_run,
        share_snapshots=share_snapshots,
    )

    log.info("Initializing")
    share_ami = ShareAMI(params)

    signal.signal(signal.SIGTERM, lambda signum, frame: share_ami.cancel())

    log.info("Validating accounts")
    share_ami.validate_accounts()

    return share_ami.run()


def execute(argv: list[str] | None = None) -> int:
    """Execute the CLI and return the process exit code"""

    args = parse_args(argv)

    load_dotenv()
    setup_logging(args.pop("verbose"))

    try:
        share_plan = run(**args)

        if not args["no_dry_run"]:
            yprint(share_plan.to_yaml())
        print_summary(share_plan)

    except AmiShareError as e:
        log.error("Failed with error: {}", e)
        return 1

    except Exception:
        traceback.print_exc()
        return 1

    return 0


def main():
    """Main entry point for the CLI"""

    sys.exit(execute())


if __name__ == "__main__":
    main()
