#!/usr/bin/env python3
"""
Development CLI for the directchat service.

This CLI provides convenient commands for common development tasks.
"""

import argparse
import asyncio
import sys
import uuid
from datetime import timedelta
from pathlib import Path

# Make the project importable when run as a plain script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

ENV_TEMPLATE = """# Development environment variables
# Copy this file to .env and customize as needed

DATABASE_URL=sqlite+aiosqlite:///./data/directchat.db
SECRET=dev-secret-change-in-production
RUN_MIGRATIONS=true
MEDIA_ROOT=./data/chat-images
"""


def serve(host: str, port: int, reload: bool) -> int:
    """Run the API with uvicorn."""
    import uvicorn

    print(f"🚀 Serving directchat on http://{host}:{port}")
    uvicorn.run("directchat.main:app", host=host, port=port, reload=reload)
    return 0


def migrate() -> int:
    from directchat.services.migration_service import run_migrations

    try:
        asyncio.run(run_migrations())
    except RuntimeError as e:
        print(f"❌ {e}")
        return 1
    print("✅ Database is up to date")
    return 0


def purge_orphans(older_than_seconds: float) -> int:
    """Delete image messages that never got their attachment linked."""
    from directchat.backend.feed import ChangeFeed
    from directchat.backend.gateway import Backend
    from directchat.backend.storage import LocalObjectStorage
    from directchat.core.clock import utcnow
    from directchat.core.config import settings
    from directchat.db import async_session_maker, engine

    async def run() -> int:
        backend = Backend(
            async_session_maker,
            LocalObjectStorage(settings.MEDIA_ROOT, settings.MEDIA_BASE_URL),
            ChangeFeed(),
        )
        try:
            return await backend.purge_orphaned_messages(
                utcnow() - timedelta(seconds=older_than_seconds)
            )
        finally:
            await engine.dispose()

    purged = asyncio.run(run())
    print(f"🧹 Purged {purged} orphaned message(s)")
    return 0


def issue_token(user_id: str, lifetime_seconds: int) -> int:
    """Print a session token for local testing of the API and websocket."""
    from directchat.auth import create_access_token

    try:
        parsed = uuid.UUID(user_id)
    except ValueError:
        print(f"❌ Not a valid user id: {user_id}")
        return 1
    print(create_access_token(parsed, lifetime_seconds))
    return 0


def setup() -> int:
    env_file = Path(__file__).resolve().parent.parent / ".env"
    if env_file.exists():
        print(f"✅ .env already exists: {env_file}")
        return 0
    try:
        env_file.write_text(ENV_TEMPLATE)
    except OSError as e:
        print(f"❌ Could not create .env: {e}")
        return 1
    print(f"✅ Created .env template: {env_file}")
    print("   Please review and customize the values as needed")
    return 0


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="directchat development CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sub = subparsers.add_parser("serve", help="Run the API server")
    sub.add_argument("--host", default="127.0.0.1")
    sub.add_argument("--port", type=int, default=8000)
    sub.add_argument("--reload", action="store_true", help="Reload on code changes")
    sub.set_defaults(func=lambda args: serve(args.host, args.port, args.reload))

    sub = subparsers.add_parser("migrate", help="Apply database migrations")
    sub.set_defaults(func=lambda args: migrate())

    sub = subparsers.add_parser(
        "purge-orphans", help="Delete image messages without an attachment"
    )
    sub.add_argument(
        "--older-than",
        type=float,
        default=3600.0,
        help="Only purge messages older than this many seconds",
    )
    sub.set_defaults(func=lambda args: purge_orphans(args.older_than))

    sub = subparsers.add_parser("token", help="Issue a session token for a user id")
    sub.add_argument("user_id")
    sub.add_argument("--lifetime", type=int, default=3600)
    sub.set_defaults(func=lambda args: issue_token(args.user_id, args.lifetime))

    sub = subparsers.add_parser("setup", help="Create a .env template")
    sub.set_defaults(func=lambda args: setup())

    return parser


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()
    if not getattr(args, "func", None):
        parser.print_help()
        return 1
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
