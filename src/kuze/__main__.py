# Kuze: Command-line entry point
#
#   kuze serve [--host --port]                  Run the API server
#   kuze issue-human SECRET_REF [--type]        Mint a human entry link
#   kuze issue-agent AGENT_ID SECRET_REF [...]  Mint an agent redemption token
#   kuze prune                                  Delete dead tokens once
#
# Settings come from KUZE_* environment variables; a .env file in the
# working directory is loaded first.

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .config import KuzeConfig
from .core import EventSeverity, EventType, get_audit_logger
from .exceptions import KuzeError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kuze",
        description="Kuze - one-time secret entry and agent redemption tokens",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"Kuze v{__version__}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Port to listen on (default: 8000)")

    human = sub.add_parser("issue-human", help="Mint a one-time entry link")
    human.add_argument("secret_ref", help="Name of the secret to be entered")
    human.add_argument("--type", dest="secret_type", default="", help="Secret type (default: api_key)")

    agent = sub.add_parser("issue-agent", help="Mint an agent redemption token")
    agent.add_argument("agent_id", help="Agent the token is bound to")
    agent.add_argument("secret_ref", help="Name of the secret to deliver")
    agent.add_argument("--type", dest="secret_type", default="", help="Secret type (default: api_key)")
    agent.add_argument("--purpose", default="", help="Free-text reason, recorded for audit")

    sub.add_parser("prune", help="Delete used and expired tokens once")
    return parser


async def _issue_human(config: KuzeConfig, args) -> dict:
    from .api.main import build_server
    server = build_server(config, require_vault=False)
    result = await server.issue_human_token(args.secret_ref, args.secret_type)
    return result.to_dict()


async def _issue_agent(config: KuzeConfig, args) -> dict:
    from .api.main import build_server
    server = build_server(config, require_vault=False)
    result = await server.issue_agent_token(
        args.agent_id, args.secret_ref, args.secret_type, args.purpose,
    )
    return result.to_dict()


async def _prune(config: KuzeConfig) -> dict:
    from .api.main import build_server
    server = build_server(config, require_vault=False)
    return {"deleted": await server.prune_expired()}


def main(argv=None):
    """Main entry point for the kuze command."""
    load_dotenv(dotenv_path=Path(".env"), override=False)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = _build_parser().parse_args(argv)

    try:
        config = KuzeConfig.from_env()

        if args.command == "serve":
            from .api.main import start_api_server

            print(f"Starting Kuze on {args.host}:{args.port} (links use {config.base_url})")
            try:
                start_api_server(config, host=args.host, port=args.port)
            except KeyboardInterrupt:
                print("\nShutting down...")
            return

        if args.command == "issue-human":
            output = asyncio.run(_issue_human(config, args))
        elif args.command == "issue-agent":
            output = asyncio.run(_issue_agent(config, args))
        else:
            output = asyncio.run(_prune(config))
    except KuzeError as e:
        print(f"Error: {e}", file=sys.stderr)
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.CRITICAL,
            message=f"kuze {args.command} failed: {e}",
        )
        sys.exit(1)

    print(json.dumps(output, indent=2))


if __name__ == "__main__":
    main()
