"""Command line entry points for issuesheet."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from issuesheet import app, webhook_server
from issuesheet.dispatcher import MalformedInput
from issuesheet.github_client import GitHubClientError
from issuesheet.logging_config import configure_logging
from issuesheet.settings import SETTINGS_PATH, ConfigurationError, load_sync_settings
from issuesheet.sheets_client import SheetsClientError
from issuesheet.version import __version__

_EXPECTED_ERRORS = (ConfigurationError, GitHubClientError, MalformedInput, SheetsClientError)


def _load(args: argparse.Namespace) -> app.Application:
    settings = load_sync_settings(args.settings)
    return app.build_application(settings)


def command_serve(args: argparse.Namespace) -> int:
    try:
        settings = load_sync_settings(args.settings)
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    secret = settings.webhook_secret
    if not secret and not args.allow_unsigned:
        print(
            "Error: no webhook secret configured. Set webhook_secret or "
            "ISSUESHEET_WEBHOOK_SECRET, or pass --allow-unsigned.",
            file=sys.stderr,
        )
        return 1

    try:
        application = app.build_application(settings)
    except _EXPECTED_ERRORS as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    webhook_server.serve(
        application.dispatcher,
        args.host or settings.host,
        args.port or settings.port,
        secret=secret,
    )
    return 0


def command_refresh(args: argparse.Namespace) -> int:
    try:
        application = _load(args)
        if not args.skip_labels:
            application.engine.install_label_dropdown()
    except _EXPECTED_ERRORS as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if not application.engine.full_refresh():
        print("Full refresh failed; see the log tab for details.", file=sys.stderr)
        return 1
    print("Sheet refreshed.")
    return 0


def command_push(args: argparse.Namespace) -> int:
    try:
        application = _load(args)
        engine = application.engine
        comment = engine.push_comment(args.row)
        labels = engine.push_label_edit(args.row)
    except _EXPECTED_ERRORS as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if comment is not None:
        print("Comment posted.")
    if labels is not None:
        print(f"Labels now: {', '.join(labels)}")
    if comment is None and labels is None:
        print("Nothing to send on that row.")
    return 0


def command_webhook(args: argparse.Namespace) -> int:
    try:
        body = Path(args.payload).read_bytes()
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    try:
        application = _load(args)
        handled = application.dispatcher.handle_webhook(body)
    except _EXPECTED_ERRORS as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Handled: {handled}" if handled else "Ignored.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Keep a Google Sheet in sync with GitHub issues")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--settings", default=SETTINGS_PATH, help="Path to the settings JSON file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Receive GitHub webhooks and sheet edits over HTTP")
    serve_parser.add_argument("--host", help="Interface to bind (defaults to the settings file)")
    serve_parser.add_argument("--port", type=int, help="Port to bind (defaults to the settings file)")
    serve_parser.add_argument(
        "--allow-unsigned",
        action="store_true",
        help="Accept requests without an X-Hub-Signature-256 header when no secret is set",
    )
    serve_parser.set_defaults(func=command_serve)

    refresh_parser = subparsers.add_parser("refresh", help="Rewrite the sheet with every open issue")
    refresh_parser.add_argument("--skip-labels", action="store_true", help="Do not reinstall the label dropdown")
    refresh_parser.set_defaults(func=command_refresh)

    push_parser = subparsers.add_parser("push", help="Send a row's pending comment and labels to GitHub")
    push_parser.add_argument("row", type=int, help="Sheet row number")
    push_parser.set_defaults(func=command_push)

    webhook_parser = subparsers.add_parser("webhook", help="Replay a saved webhook payload")
    webhook_parser.add_argument("payload", help="Path to a JSON webhook body")
    webhook_parser.set_defaults(func=command_webhook)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO, console=args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
