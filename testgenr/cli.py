"""Command-line interface for the test-case generator.

Sub-commands:
    configure PROJECT        Store project settings (file, env or AWS profile)
    trigger EVENT [EVENT..]  Handle issue transition events from JSON files
    list ISSUE               Show stored test cases
    poll ISSUE               Wait for generation and show test cases
    test-connection PROJECT  Check the project's Bedrock credentials
    invoke OPERATION         Run a panel or settings operation by name
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler
from rich.markup import escape

from testgenr.aws_credentials import resolve_credentials, resolve_region
from testgenr.bedrock import BedrockClient
from testgenr.config import ConfigurationError, load_settings, save_config
from testgenr.coordinator import GenerationCoordinator
from testgenr.jira import JiraClient, JiraClientError
from testgenr.models import GenerationOutcome
from testgenr.poller import POLL_FAILED, StatusPoller
from testgenr.records import LimitExceededError, RecordService
from testgenr.reporters import ConsoleReporter, JsonReporter, Reporter
from testgenr.resolvers import OPERATION_NAMES, build_resolver
from testgenr.storage import JsonFilePropertyStore, StorageGateway

DEFAULT_STORE_PATH = "testgenr-store.json"


class CompositeReporter(Reporter):
    """Reporter that delegates to multiple reporters."""

    def __init__(self, reporters: list[Reporter]):
        self._reporters = reporters

    def on_generation_start(self, issue_key: str) -> None:
        for reporter in self._reporters:
            reporter.on_generation_start(issue_key)

    def on_generation_skipped(self, issue_key: Optional[str], reason: str) -> None:
        for reporter in self._reporters:
            reporter.on_generation_skipped(issue_key, reason)

    def on_generation_complete(self, result) -> None:
        for reporter in self._reporters:
            reporter.on_generation_complete(result)

    def on_run_complete(self, results: list) -> None:
        for reporter in self._reporters:
            reporter.on_run_complete(results)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="testgenr",
        description="Generate test cases for Jira stories with AWS Bedrock",
    )
    parser.add_argument(
        "-s", "--store",
        default=DEFAULT_STORE_PATH,
        help=f"Path to the JSON property store (default: {DEFAULT_STORE_PATH})",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress per-issue output, show only summary",
    )
    parser.add_argument(
        "-j", "--json-output",
        metavar="PATH",
        help="Write JSON results to file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log progress at INFO level",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    configure = commands.add_parser("configure", help="Store project settings")
    configure.add_argument("project", help="Project key")
    configure.add_argument(
        "-c", "--config",
        default="testgenr.json",
        help="Settings file used when no TESTGENR_* variables are set (default: testgenr.json)",
    )
    configure.add_argument(
        "--from-aws-profile",
        metavar="PROFILE",
        nargs="?",
        const="",
        help="Take credentials and region from an AWS profile (default chain if no name)",
    )

    trigger = commands.add_parser("trigger", help="Handle issue transition events")
    trigger.add_argument("events", nargs="+", metavar="EVENT", help="Event JSON files")
    trigger.add_argument(
        "-d", "--description-file",
        metavar="PATH",
        help="Read the story description from a file instead of Jira",
    )

    list_cmd = commands.add_parser("list", help="Show stored test cases")
    list_cmd.add_argument("issue", help="Issue key")

    poll = commands.add_parser("poll", help="Wait for generation and show test cases")
    poll.add_argument("issue", help="Issue key")
    poll.add_argument("--attempts", type=int, default=4, help="Status reads (default: 4)")
    poll.add_argument("--delay", type=float, default=4.0, help="Seconds between reads (default: 4)")

    test_connection = commands.add_parser(
        "test-connection", help="Check the project's Bedrock credentials"
    )
    test_connection.add_argument("project", help="Project key")

    invoke = commands.add_parser("invoke", help="Run a panel or settings operation by name")
    invoke.add_argument("operation", choices=OPERATION_NAMES, help="Operation name")
    invoke.add_argument("--issue", help="Issue key")
    invoke.add_argument("--project", help="Project key (default: taken from the issue key)")
    invoke.add_argument("--payload", metavar="JSON", help="Operation payload as a JSON value")

    return parser.parse_args(argv)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
    )


def create_reporters(args: argparse.Namespace) -> list[Reporter]:
    """Create reporters based on command-line arguments."""
    reporters: list[Reporter] = [ConsoleReporter(quiet=args.quiet)]
    if args.json_output:
        reporters.append(JsonReporter(output_path=args.json_output))
    return reporters


def read_description_file(path: str):
    """Return a coroutine function that yields the text of a file for any issue."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Could not read description file {path}: {e}") from e

    async def from_file(issue_id: str) -> str:
        return text

    return from_file


def build_jira_client() -> JiraClient:
    """Create a Jira client from JIRA_BASE_URL, JIRA_USERNAME and JIRA_API_TOKEN.

    Raises:
        ConfigurationError: If the variables are missing.
    """
    base_url = os.environ.get("JIRA_BASE_URL")
    if not base_url:
        raise ConfigurationError(
            "Pass --description-file or set JIRA_BASE_URL, JIRA_USERNAME and JIRA_API_TOKEN"
        )
    try:
        return JiraClient(
            base_url,
            os.environ.get("JIRA_USERNAME", ""),
            os.environ.get("JIRA_API_TOKEN", ""),
        )
    except JiraClientError as e:
        raise ConfigurationError(str(e)) from e


def load_event(path: str) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not read event file {path}: {e}") from e


async def run_configure(args: argparse.Namespace, gateway: StorageGateway) -> int:
    if args.from_aws_profile is None:
        form = load_settings(args.config)
    else:
        profile = args.from_aws_profile or None
        credentials = resolve_credentials(profile)
        # Trigger status and the rest still come from the settings sources
        try:
            form = load_settings(args.config)
        except ConfigurationError:
            form = {}
        form.update({
            "accessKey": credentials.access_key_id,
            "secretKey": credentials.secret_access_key,
            "sessionToken": credentials.session_token,
            "region": form.get("region") or resolve_region(profile),
        })

    config = await save_config(gateway, args.project, form)
    ConsoleReporter().console.print_json(data=config.to_dict())
    return 0


async def run_trigger(args: argparse.Namespace, gateway: StorageGateway) -> int:
    events = [load_event(path) for path in args.events]
    jira_client = None
    if args.description_file:
        describe = read_description_file(args.description_file)
    else:
        jira_client = build_jira_client()
        describe = jira_client.get_description

    reporters = create_reporters(args)
    reporter = reporters[0] if len(reporters) == 1 else CompositeReporter(reporters)

    try:
        async with BedrockClient(gateway) as model_client:
            coordinator = GenerationCoordinator(gateway, model_client, describe, reporter=reporter)
            results = await coordinator.process_events(events)
    finally:
        if jira_client is not None:
            await jira_client.aclose()

    failed = any(r.outcome == GenerationOutcome.FAILED for r in results)
    return 1 if failed else 0


async def run_list(args: argparse.Namespace, gateway: StorageGateway) -> int:
    records = await gateway.get_test_cases(args.issue)
    ConsoleReporter().print_records(args.issue, records)
    return 0


async def run_poll(args: argparse.Namespace, gateway: StorageGateway) -> int:
    poller = StatusPoller(gateway)
    result = await poller.poll_result(args.issue, max_attempts=args.attempts, delay=args.delay)
    reporter = ConsoleReporter()
    if result == POLL_FAILED:
        reporter.console.print(f"[yellow]Generation for {args.issue} is still running[/yellow]")
        return 1
    reporter.print_records(args.issue, result)
    return 0


async def run_test_connection(args: argparse.Namespace, gateway: StorageGateway) -> int:
    credentials = await gateway.get_credentials(args.project)
    if not credentials.is_complete:
        raise ConfigurationError(f"No AWS credentials configured for project {args.project}")
    region = await gateway.get_region(args.project)

    async with BedrockClient(gateway) as model_client:
        result = await model_client.test_connection(credentials, region)

    console = ConsoleReporter().console
    if result.success:
        console.print(f"[green]{result.message}[/green]")
        return 0
    console.print(f"[red]{result.message}[/red]")
    if result.error:
        console.print(f"   [dim]{escape(result.error)}[/dim]")
    return 1


def build_context(issue_key: Optional[str], project_key: Optional[str]) -> dict:
    """Build a resolver context for an issue, deriving the project from its key."""
    if not project_key and issue_key and "-" in issue_key:
        project_key = issue_key.rsplit("-", 1)[0]
    if not issue_key and not project_key:
        raise ConfigurationError("Pass --issue or --project")

    extension = {}
    if issue_key:
        extension["issue"] = {"key": issue_key}
    if project_key:
        extension["project"] = {"key": project_key}
    return {"extension": extension}


async def run_invoke(args: argparse.Namespace, gateway: StorageGateway) -> int:
    context = build_context(args.issue, args.project)
    try:
        payload = json.loads(args.payload) if args.payload else None
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON payload: {e}") from e

    jira_client = build_jira_client() if os.environ.get("JIRA_BASE_URL") else None
    console = ConsoleReporter().console
    try:
        async with BedrockClient(gateway) as model_client:
            resolver = build_resolver(
                gateway,
                RecordService(gateway),
                StatusPoller(gateway),
                model_client,
                status_source=jira_client,
            )
            result = await resolver.invoke(args.operation, payload, context)
    except (LimitExceededError, ValueError) as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        return 1
    finally:
        if jira_client is not None:
            await jira_client.aclose()

    console.print_json(data=result)
    return 0


COMMANDS = {
    "configure": run_configure,
    "trigger": run_trigger,
    "list": run_list,
    "poll": run_poll,
    "test-connection": run_test_connection,
    "invoke": run_invoke,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code: 0 for success, 1 for failures, 2 for configuration errors
    """
    args = parse_args(argv)
    configure_logging(args.verbose)

    gateway = StorageGateway(JsonFilePropertyStore(args.store))
    try:
        return asyncio.run(COMMANDS[args.command](args, gateway))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
