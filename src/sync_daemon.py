"""Daemon that keeps one facade in sync and logs its state changes."""

import argparse
import logging
import signal
import sys

import redis

from services.live_view import LiveView
from services.log_service import configure_logging, parse_level
from services.settings import SyncSettings
from services.sync_context import SyncContext

logger = logging.getLogger("sync_daemon")


def get_redis_client(redis_url: str) -> redis.Redis:
    """Create Redis client from a URL."""
    return redis.Redis.from_url(redis_url, decode_responses=True)


def build_parser(settings: SyncSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Live execution state synchronizer")
    parser.add_argument(
        "--redis-url",
        default=settings.redis_url,
        help=f"Redis URL for the push channel (default: {settings.redis_url})",
    )
    parser.add_argument(
        "--api-url",
        default=settings.api_url,
        help=f"Workflow API base URL (default: {settings.api_url})",
    )
    parser.add_argument(
        "--user-id",
        type=int,
        default=settings.user_id,
        help="User whose private channel is joined",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=settings.poll_interval,
        help=f"Fallback poll interval in seconds (default: {settings.poll_interval})",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default=settings.log_level,
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log-dir",
        default="logs",
        help="Directory for the rotating log file; empty to disable",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("runs", help="Follow every workflow run")

    content = subparsers.add_parser("content", help="Follow one content item")
    content.add_argument("content_id", help="Content ID")

    timeline = subparsers.add_parser("timeline", help="Follow node-level progress")
    target = timeline.add_mutually_exclusive_group(required=True)
    target.add_argument("--execution-id", help="Execution to follow")
    target.add_argument("--content-id", help="Content whose executions to follow")

    return parser


def describe(state) -> str:
    """One-line summary of a facade state for the log."""
    parts = [f"connection={state.connection_status.value}"]
    if hasattr(state, "runs"):
        active = [run.run_id for run in state.runs if run.is_active]
        parts.append(f"runs={len(state.runs)} active={len(active)}")
        if state.connected_execution_id:
            parts.append(f"watching={state.connected_execution_id}")
    if hasattr(state, "workflow_runs"):
        overall = state.status.overall_status.value if state.status else "unknown"
        parts.append(f"status={overall} nodes={len(state.node_runs)}")
        if state.latest_node_run:
            latest = state.latest_node_run
            parts.append(f"latest={latest.node_name}:{latest.status.value}")
    if hasattr(state, "executions"):
        current = state.current_execution
        parts.append(f"executions={len(state.executions)}")
        if current is not None:
            parts.append(
                f"current={current.execution_id}:{current.status.value}"
                f" nodes={len(current.nodes)}"
            )
    if state.error:
        parts.append(f"error={state.error!r}")
    return " ".join(parts)


def open_view(context: SyncContext, args: argparse.Namespace) -> LiveView:
    if args.command == "runs":
        return context.run_list()
    if args.command == "content":
        return context.content_workflow(args.content_id)
    return context.execution_timeline(
        execution_id=args.execution_id, content_id=args.content_id
    )


def main(argv: list[str] | None = None) -> int:
    settings = SyncSettings.from_env()
    args = build_parser(settings).parse_args(argv)

    configure_logging(
        level=parse_level(args.log_level),
        log_dir=args.log_dir or None,
        log_file="sync_daemon.log",
    )

    try:
        settings = SyncSettings.model_validate(
            {
                **settings.model_dump(),
                "redis_url": args.redis_url,
                "api_url": args.api_url,
                "user_id": args.user_id,
                "poll_interval": args.poll_interval,
                "log_level": args.log_level,
            }
        )
    except ValueError as e:
        logger.error(f"Invalid settings: {e}")
        return 2

    logger.info(f"Connecting to Redis at {settings.redis_url}")
    redis_client = get_redis_client(settings.redis_url)

    try:
        redis_client.ping()
        logger.info("Redis connection established")
    except redis.RedisError as e:
        # Polling still works without the push channel.
        logger.warning(f"Redis unavailable, starting in polling mode: {e}")

    context = SyncContext(settings, redis_client)

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        context.stop()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    view = open_view(context, args)
    last = {"line": None}

    def log_state(state) -> None:
        line = describe(state)
        if line != last["line"]:
            last["line"] = line
            logger.info(line)

    view.add_listener(log_state)
    log_state(view.state)

    context.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
