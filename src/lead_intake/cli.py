"""Command-line entry point for Lead Intake."""

from __future__ import annotations

import argparse
from pathlib import Path

from lead_intake.auth import TokenStoreAccessor
from lead_intake.core import AppSettings, configure_logging, load_app_settings
from lead_intake.core.interfaces import PipelineError
from lead_intake.ingestion import WatchManager
from lead_intake.storage import SqliteCrmRepository
from lead_intake.transport import GmailClient, GoogleOAuthClient
from lead_intake.triage import PendingReviewService


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Lead Intake inbound email service")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=[
            "info",
            "serve",
            "renew-watches",
            "watch",
            "pending",
            "cleanup-dismissed",
        ],
        help="Operation to execute.",
    )
    parser.add_argument(
        "--user-id",
        dest="user_id",
        default=None,
        help="Mailbox owner for the watch command.",
    )
    parser.add_argument(
        "--stop",
        action="store_true",
        help="Cancel the watch instead of registering it.",
    )
    parser.add_argument(
        "--dismissed",
        action="store_true",
        help="List auto-dismissed emails instead of the review queue.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Limit for dismissed listings (default: 50).",
    )
    parser.add_argument(
        "--retention-days",
        dest="retention_days",
        type=int,
        default=14,
        help="Age after which dismissed emails are deleted (default: 14).",
    )
    parser.add_argument("--host", default=None, help="Override the bind address.")
    parser.add_argument("--port", type=int, default=None, help="Override the bind port.")
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> int:
    """Execute the requested CLI command and return an exit status."""
    command = args.command
    if command == "info":
        print("Lead Intake is ready.")
        print(f"Database path: {settings.storage.db_path}")
        print(f"Pub/Sub topic: {settings.google.pubsub_topic or '(not configured)'}")
        print(f"Classifier: {'enabled' if settings.classifier.api_key else 'disabled'}")
        print(
            "Automation webhook: "
            f"{'configured' if settings.automation.webhook_url else 'not configured'}"
        )
        return 0
    if command == "serve":
        _run_server(settings, host=args.host, port=args.port)
        return 0
    if command == "renew-watches":
        return _run_renewal(settings)
    if command == "watch":
        if not args.user_id:
            print("The watch command requires --user-id.")
            return 2
        return _run_watch(settings, args.user_id, stop=args.stop)
    if command == "pending":
        _run_pending(settings, dismissed=args.dismissed, limit=args.limit)
        return 0
    if command == "cleanup-dismissed":
        with SqliteCrmRepository(settings.storage) as repository:
            removed = PendingReviewService(repository).cleanup_expired_dismissed(
                args.retention_days
            )
        print(f"Removed {removed} dismissed email(s).")
        return 0
    return 2


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    raise SystemExit(execute(args, settings))


def _run_server(settings: AppSettings, *, host: str | None, port: int | None) -> None:
    """Serve the web application with uvicorn."""
    import uvicorn  # pylint: disable=import-outside-toplevel

    from lead_intake.web import create_app  # pylint: disable=import-outside-toplevel

    uvicorn.run(
        create_app(settings),
        host=host or settings.web.host,
        port=port or settings.web.port,
        log_config=None,
    )


def _watch_manager(
    settings: AppSettings,
    repository: SqliteCrmRepository,
    gmail: GmailClient,
    oauth: GoogleOAuthClient,
) -> WatchManager:
    tokens = TokenStoreAccessor(
        repository, oauth, skew_seconds=settings.google.token_refresh_skew_seconds
    )
    return WatchManager(
        repository,
        tokens,
        gmail,
        topic_name=settings.google.pubsub_topic,
        renew_within_days=settings.watch.renew_within_days,
    )


def _run_renewal(settings: AppSettings) -> int:
    """Renew expiring watches and print a per-mailbox summary."""
    oauth = GoogleOAuthClient(settings.google)
    try:
        with (
            GmailClient(settings.google) as gmail,
            SqliteCrmRepository(settings.storage) as repository,
        ):
            report = _watch_manager(settings, repository, gmail, oauth).renew_all()
    finally:
        oauth.close()

    for result in report.results:
        detail = result.error or (
            result.expiration.isoformat(timespec="minutes") if result.expiration else "-"
        )
        print(f"{result.gmail_email:<40}  {result.status:<8}  {detail}")
    print(
        f"Renewed {report.renewed}, failed {report.failed}, skipped {report.skipped}."
    )
    return 1 if report.failed else 0


def _run_watch(settings: AppSettings, user_id: str, *, stop: bool) -> int:
    """Register or cancel the watch for a single mailbox."""
    oauth = GoogleOAuthClient(settings.google)
    try:
        with (
            GmailClient(settings.google) as gmail,
            SqliteCrmRepository(settings.storage) as repository,
        ):
            manager = _watch_manager(settings, repository, gmail, oauth)
            if stop:
                manager.stop(user_id)
                print(f"Stopped watch for user {user_id}.")
                return 0
            registration = manager.start(user_id)
    except PipelineError as exc:
        print(f"Watch command failed: {exc}")
        return 1
    finally:
        oauth.close()

    expires = (
        registration.expiration.isoformat(timespec="minutes")
        if registration.expiration
        else "unknown"
    )
    print(f"Watch active from history {registration.history_id}, expires {expires}.")
    return 0


def _run_pending(settings: AppSettings, *, dismissed: bool, limit: int) -> None:
    """List triage records awaiting review."""
    with SqliteCrmRepository(settings.storage) as repository:
        review = PendingReviewService(repository)
        records = review.list_dismissed(limit) if dismissed else review.list_open()

    if not records:
        print("No pending emails found.")
        return

    print(f"Showing {len(records)} pending email(s):")
    header = f"{'Status':<14}  {'Conf':>4}  {'Received':<16}  {'From':<32}  Subject"
    print(header)
    print("-" * len(header))
    for record in records:
        confidence = (
            f"{record.ai_confidence:.2f}" if record.ai_confidence is not None else "-"
        )
        received = record.received_at.isoformat(timespec="minutes")[:16]
        print(
            f"{record.status:<14}  {confidence:>4}  {received:<16}  "
            f"{record.from_email:<32}  {record.subject}"
        )


if __name__ == "__main__":
    main()
