"""CLI module for the crowdfund service with db/profile/wallet/campaign/watch/broker subcommands."""

import argparse
import signal
import sys
import time
from datetime import datetime, timedelta
from typing import List

from crowdfund.app import Services, build_services
from crowdfund.config import Config
from crowdfund.db.healthcheck import check_tables_exist
from crowdfund.db.models import Campaign
from crowdfund.db.types import utcnow
from crowdfund.errors import CrowdfundError, InvalidInput, describe_error
from crowdfund.log import get_logger, setup_logging
from crowdfund.messaging.rabbitmq import RabbitMQConnection
from crowdfund.messaging.routing import ALL_QUEUES
from crowdfund.services.crowdfund import CampaignDraft, CampaignView
from crowdfund.utils.formatting import format_amount, format_timestamp, to_smallest_unit

logger = get_logger(__name__)

# Global shutdown flag
_shutdown = False


def signal_handler(signum, frame):
    """Handle shutdown signals."""
    global _shutdown
    logger.info("Shutdown signal received, stopping watcher...")
    _shutdown = True


def _amount(services: Services, value: int) -> str:
    return format_amount(value, services.config.currency_decimals, services.config.currency_symbol)


def _print_campaigns(services: Services, campaigns: List[Campaign]) -> None:
    if not campaigns:
        print("No campaigns found")
        return
    for campaign in campaigns:
        state = "published" if campaign.is_published else "draft"
        print(
            f"  [{campaign.campaign_index}] {campaign.slug} ({state}) - {campaign.title}\n"
            f"      id: {campaign.id}\n"
            f"      goal: {_amount(services, campaign.goal_amount)}, "
            f"deadline: {format_timestamp(campaign.deadline_at)}"
        )


def _print_view(services: Services, view: CampaignView) -> None:
    campaign = view.campaign
    print(f"\n{campaign.title} ({campaign.slug})")
    print("-" * 50)
    print(f"  Status: {view.status.value}")
    print(f"  Deposit address: {campaign.campaign_deposit_address}")
    print(f"  Goal: {_amount(services, campaign.goal_amount)}")
    print(f"  Minimum pledge: {_amount(services, campaign.min_pledge_amount)}")
    print(f"  Deadline: {format_timestamp(campaign.deadline_at)}")
    if view.state is not None:
        print(f"  Raised: {_amount(services, view.state.total_raised)}")
        print(f"  Backers: {view.state.backer_count}")
    if view.contribution:
        print(f"  Your contribution: {_amount(services, view.contribution)}")
    if campaign.summary:
        print(f"\n  {campaign.summary}")
    if view.updates:
        print(f"\nUpdates ({len(view.updates)}):")
        for entry in view.updates:
            heading = entry.title or "Update"
            print(f"  {format_timestamp(entry.created_at)} {heading}")
    print("-" * 50)


def _parse_deadline(args) -> datetime:
    if args.deadline:
        try:
            return datetime.fromisoformat(args.deadline)
        except ValueError as e:
            raise InvalidInput(f"Invalid deadline: {args.deadline}") from e
    return utcnow() + timedelta(days=args.days)


# ============= COMMANDS =============


def db_command(services: Services, args) -> None:
    if args.subcommand == "init":
        services.database.create_schema()
        print("Database schema created")
    elif args.subcommand == "check":
        check_tables_exist(services.database)
        print("All required tables exist")


def profile_command(services: Services, args) -> None:
    if args.subcommand == "show":
        profile = services.service.get_profile()
        if profile is None:
            print("No profile (signed out or not created yet)")
            return
        print(f"{profile.username} ({profile.display_name or '-'}) id={profile.id}")
    elif args.subcommand == "ensure":
        profile = services.service.ensure_profile(username=args.username, display_name=args.display_name)
        print(f"Profile ready: {profile.username}")


def wallet_command(services: Services, args) -> None:
    service = services.service
    if args.subcommand == "list":
        wallets = service.list_my_wallets()
        if not wallets:
            print("No wallets linked")
        for wallet in wallets:
            marker = "*" if wallet.is_primary else " "
            print(f" {marker} [{wallet.id}] {wallet.address} (chain {wallet.chain_id})")
    elif args.subcommand == "link":
        wallet = service.link_wallet(args.address)
        print(f"Linked wallet [{wallet.id}] {wallet.address}")
    elif args.subcommand == "primary":
        service.set_primary_wallet(args.wallet_id)
        print(f"Wallet {args.wallet_id} is now primary")


def campaign_command(services: Services, args) -> None:
    service = services.service
    decimals = services.config.currency_decimals

    if args.subcommand == "list":
        if args.mine:
            campaigns = service.list_my_campaigns()
        else:
            campaigns = service.list_campaigns(published_only=not args.include_drafts, query=args.query)
        _print_campaigns(services, campaigns)

    elif args.subcommand == "create":
        draft = CampaignDraft(
            title=args.title,
            slug=args.slug,
            goal_amount=to_smallest_unit(args.goal, decimals),
            deadline_at=_parse_deadline(args),
            min_pledge_amount=to_smallest_unit(args.min_pledge, decimals) if args.min_pledge else None,
            summary=args.summary,
        )
        campaign = service.create_draft_campaign(draft)
        print(f"Created draft {campaign.slug} (id {campaign.id})")
        print(f"  Deposit address: {campaign.campaign_deposit_address}")

    elif args.subcommand == "show":
        view = service.load_campaign_view(args.slug)
        if view is None:
            print(f"Campaign not found: {args.slug}")
            sys.exit(1)
        _print_view(services, view)

    elif args.subcommand == "edit":
        patch = {}
        for name in ("title", "summary", "description_md", "cover_image_url", "slug"):
            value = getattr(args, name)
            if value is not None:
                patch[name] = value
        if args.goal is not None:
            patch["goal_amount"] = to_smallest_unit(args.goal, decimals)
        if args.min_pledge is not None:
            patch["min_pledge_amount"] = to_smallest_unit(args.min_pledge, decimals)
        if args.deadline is not None:
            patch["deadline_at"] = _parse_deadline(args)
        campaign = service.update_campaign(args.campaign_id, patch)
        print(f"Updated {campaign.slug}")

    elif args.subcommand == "assign-address":
        campaign = service.assign_deposit_address(args.campaign_id)
        print(f"Deposit address: {campaign.campaign_deposit_address}")

    elif args.subcommand == "publish":
        campaign = service.publish_campaign(args.campaign_id)
        print(f"Published {campaign.slug}")

    elif args.subcommand == "close":
        campaign = service.close_campaign_early(args.campaign_id)
        print(f"Closed {campaign.slug} at {format_timestamp(campaign.deadline_at)}")

    elif args.subcommand == "delete":
        service.delete_campaign(args.campaign_id)
        print(f"Deleted {args.campaign_id}")

    elif args.subcommand == "post-update":
        entry = service.create_update(args.campaign_id, args.body, title=args.title)
        print(f"Posted update {entry.id}")

    elif args.subcommand == "finalize":
        receipt = service.finalize_campaign(args.campaign_id)
        print(f"Finalized: {receipt.tx_hash} ({receipt.status})")

    elif args.subcommand == "refund":
        receipt = service.claim_refund(args.campaign_id, wallet_address=args.wallet)
        print(f"Refund: {receipt.tx_hash} ({receipt.status})")


def watch_command(services: Services, args) -> None:
    """Watch a campaign and report new pledges until interrupted."""
    with services.make_watcher(background=not args.once) as watcher:
        view = watcher.open(args.slug)
        if view is None:
            print(f"Campaign not found: {args.slug}")
            sys.exit(1)
        _print_view(services, view)

        if not view.is_pollable:
            print(f"Campaign is {view.status.value}, nothing to watch")
            return

        if args.once:
            watcher.poller.poll_once()
            balance = watcher.poller.reconciler.last_observed
            if balance is not None:
                print(f"Deposit balance: {_amount(services, balance)}")
            return

        print(f"Watching {view.campaign.campaign_deposit_address} every {services.config.poll_interval_seconds}s")
        while not _shutdown and watcher.poller.is_active:
            time.sleep(1)


def broker_command(services: Services, args) -> None:
    config = services.config
    connection = RabbitMQConnection.from_config(config)
    try:
        connection.connect()
        if args.subcommand == "setup":
            connection.declare_topology(config.rabbitmq_exchange)
            print("Broker setup complete!")
            print(f"  Exchange: {config.rabbitmq_exchange}")
            print(f"  Queues: {', '.join(ALL_QUEUES)}")
        elif args.subcommand == "status":
            status = connection.queue_depths()
            print("\nQueue Status:")
            print("-" * 50)
            for queue_name in ALL_QUEUES:
                queue_status = status.get(queue_name, {})
                if "error" in queue_status:
                    print(f"  {queue_name}: ERROR - {queue_status['error']}")
                else:
                    print(f"  {queue_name}:")
                    print(f"    Messages: {queue_status.get('message_count', 0)}")
                    print(f"    Consumers: {queue_status.get('consumer_count', 0)}")
            print("-" * 50)
    finally:
        connection.close()


COMMANDS = {
    "db": db_command,
    "profile": profile_command,
    "wallet": wallet_command,
    "campaign": campaign_command,
    "watch": watch_command,
    "broker": broker_command,
}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        description="Crowdfunding campaigns with per-campaign deposit addresses",
        prog="python -m crowdfund",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Database commands
    db_parser = subparsers.add_parser("db", help="Database commands")
    db_subparsers = db_parser.add_subparsers(dest="subcommand", help="Database subcommands")
    db_subparsers.add_parser("init", help="Create tables (local development)")
    db_subparsers.add_parser("check", help="Verify required tables exist")

    # Profile commands
    profile_parser = subparsers.add_parser("profile", help="Profile commands")
    profile_subparsers = profile_parser.add_subparsers(dest="subcommand", help="Profile subcommands")
    profile_subparsers.add_parser("show", help="Show the current profile")
    profile_ensure = profile_subparsers.add_parser("ensure", help="Create the current profile if missing")
    profile_ensure.add_argument("--username", type=str, help="Username")
    profile_ensure.add_argument("--display-name", type=str, help="Display name")

    # Wallet commands
    wallet_parser = subparsers.add_parser("wallet", help="Wallet commands")
    wallet_subparsers = wallet_parser.add_subparsers(dest="subcommand", help="Wallet subcommands")
    wallet_subparsers.add_parser("list", help="List linked wallets")
    wallet_link = wallet_subparsers.add_parser("link", help="Link a wallet address")
    wallet_link.add_argument("address", type=str, help="Wallet address (0x...)")
    wallet_primary = wallet_subparsers.add_parser("primary", help="Make a wallet primary")
    wallet_primary.add_argument("wallet_id", type=int, help="Wallet id")

    # Campaign commands
    campaign_parser = subparsers.add_parser("campaign", help="Campaign commands")
    campaign_subparsers = campaign_parser.add_subparsers(dest="subcommand", help="Campaign subcommands")

    campaign_list = campaign_subparsers.add_parser("list", help="List campaigns")
    campaign_list.add_argument("--mine", action="store_true", help="Only my campaigns")
    campaign_list.add_argument("--include-drafts", action="store_true", help="Include my drafts")
    campaign_list.add_argument("--query", "-q", type=str, help="Title search")

    campaign_create = campaign_subparsers.add_parser("create", help="Create a draft campaign")
    campaign_create.add_argument("--title", type=str, required=True, help="Campaign title")
    campaign_create.add_argument("--slug", type=str, required=True, help="URL slug")
    campaign_create.add_argument("--goal", type=str, required=True, help="Goal in whole currency units")
    campaign_create.add_argument("--min-pledge", type=str, help="Minimum pledge in whole currency units")
    campaign_create.add_argument("--deadline", type=str, help="ISO-8601 deadline")
    campaign_create.add_argument("--days", type=int, default=30, help="Days until deadline (default: 30)")
    campaign_create.add_argument("--summary", type=str, help="Short summary")

    campaign_show = campaign_subparsers.add_parser("show", help="Show a campaign")
    campaign_show.add_argument("slug", type=str, help="Campaign slug")

    campaign_edit = campaign_subparsers.add_parser("edit", help="Edit a campaign")
    campaign_edit.add_argument("campaign_id", type=str, help="Campaign id")
    campaign_edit.add_argument("--title", type=str)
    campaign_edit.add_argument("--summary", type=str)
    campaign_edit.add_argument("--description-md", dest="description_md", type=str)
    campaign_edit.add_argument("--cover-image-url", dest="cover_image_url", type=str)
    campaign_edit.add_argument("--slug", type=str, help="Drafts only")
    campaign_edit.add_argument("--goal", type=str, help="Drafts only")
    campaign_edit.add_argument("--min-pledge", type=str, help="Drafts only")
    campaign_edit.add_argument("--deadline", type=str, help="Drafts only, ISO-8601")
    campaign_edit.set_defaults(days=30)

    for name, help_text in (
        ("assign-address", "Retry deposit address derivation"),
        ("publish", "Publish a draft"),
        ("close", "Close a live campaign early"),
        ("delete", "Delete a draft"),
        ("finalize", "Finalize a successful campaign"),
    ):
        sub = campaign_subparsers.add_parser(name, help=help_text)
        sub.add_argument("campaign_id", type=str, help="Campaign id")

    campaign_refund = campaign_subparsers.add_parser("refund", help="Claim a refund from a failed campaign")
    campaign_refund.add_argument("campaign_id", type=str, help="Campaign id")
    campaign_refund.add_argument("--wallet", type=str, help="Contributor wallet (default: primary)")

    campaign_post = campaign_subparsers.add_parser("post-update", help="Post a campaign update")
    campaign_post.add_argument("campaign_id", type=str, help="Campaign id")
    campaign_post.add_argument("--body", type=str, required=True, help="Markdown body")
    campaign_post.add_argument("--title", type=str, help="Update title")

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Watch a live campaign for new pledges")
    watch_parser.add_argument("slug", type=str, help="Campaign slug")
    watch_parser.add_argument("--once", action="store_true", help="Poll once and exit")

    # Broker commands
    broker_parser = subparsers.add_parser("broker", help="Broker management commands")
    broker_subparsers = broker_parser.add_subparsers(dest="subcommand", help="Broker subcommands")
    broker_subparsers.add_parser("setup", help="Set up the notification exchange and queues")
    broker_subparsers.add_parser("status", help="Show queue status")

    return parser


def main() -> None:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command != "watch" and not getattr(args, "subcommand", None):
        print(f"Usage: python -m crowdfund {args.command} <subcommand>")
        sys.exit(1)

    # Load config
    try:
        config = Config.from_env()
        config.validate()
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Setup signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    services = build_services(config)
    try:
        COMMANDS[args.command](services, args)
    except CrowdfundError as e:
        logger.debug(f"{e.__class__.__name__}: {e}")
        print(f"Error: {describe_error(e)}", file=sys.stderr)
        sys.exit(2 if e.retryable else 1)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        services.close()
