#!/usr/bin/env python3
"""
Script to issue an API key directly against the credential database.

Usage:
    python scripts/create_api_key.py --user-id 1 --scope read --scope write
    python scripts/create_api_key.py --username alice --email alice@example.com --scope read
"""

import asyncio
import argparse
import sys
from pathlib import Path
from typing import List, Optional

# Add parent directory to path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config import settings
from app.core.api_key import KeyCodec
from app.core.records import ApiKeyRecord
from app.database import AsyncSessionLocal, init_db
from app.services.sqlalchemy_store import SQLAlchemyCredentialStore
from app.services.token_service import utc_now


async def create_api_key(
    store: SQLAlchemyCredentialStore,
    user_id: int,
    scopes: List[str],
    prefix: str,
    environment: str
) -> tuple[str, ApiKeyRecord]:
    """
    Generate a key for an existing user and persist its digest.

    Returns:
        Tuple of (key text, stored record)
    """
    generated = KeyCodec().generate(prefix, environment)
    record = await store.insert_key(
        user_id=user_id,
        key_hash=generated.key_hash,
        key_prefix=generated.parsed.prefix,
        environment=generated.parsed.environment,
        version=generated.parsed.version,
        scopes=frozenset(scopes),
        issued_at=utc_now(),
    )
    return generated.key_text, record


async def resolve_user(
    store: SQLAlchemyCredentialStore,
    user_id: Optional[int],
    username: Optional[str],
    email: Optional[str]
) -> int:
    if user_id is not None:
        user = await store.get_user(user_id)
        if user is None:
            raise ValueError(f"User {user_id} does not exist")
        return user.id
    user = await store.create_user(username, email)
    print(f"Created user {user.username} (ID: {user.id})")
    return user.id


async def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description=f"Issue an API key for {settings.PROJECT_NAME}"
    )
    parser.add_argument("--user-id", type=int, default=None, help="Owner of the key")
    parser.add_argument("--username", default=None, help="Create a new owner with this username")
    parser.add_argument("--email", default=None, help="Email of the new owner")
    parser.add_argument(
        "--scope",
        dest="scopes",
        action="append",
        default=[],
        help="Scope granted to the key (repeatable)"
    )
    parser.add_argument("--prefix", default=settings.API_KEY_PREFIX, help="Key prefix")
    parser.add_argument("--environment", default=settings.API_KEY_ENVIRONMENT, help="Key environment tag")

    args = parser.parse_args()
    if args.user_id is None and not (args.username and args.email):
        parser.error("either --user-id or both --username and --email are required")

    await init_db()
    store = SQLAlchemyCredentialStore(AsyncSessionLocal)

    try:
        user_id = await resolve_user(store, args.user_id, args.username, args.email)
        plain_key, api_key = await create_api_key(
            store,
            user_id=user_id,
            scopes=args.scopes,
            prefix=args.prefix,
            environment=args.environment
        )

        print("\n" + "="*70)
        print("API KEY CREATED SUCCESSFULLY")
        print("="*70)
        print(f"ID: {api_key.id}")
        print(f"User ID: {api_key.user_id}")
        print(f"Version: {api_key.version}")
        print(f"Scopes: {', '.join(sorted(api_key.scopes)) or '(none)'}")
        print(f"Issued: {api_key.issued_at}")
        print("\n" + "-"*70)
        print("IMPORTANT: Save this API key now. It will NOT be shown again!")
        print("-"*70)
        print(f"\nAPI Key: {plain_key}\n")
        print("="*70)
        print("\nExchange the key for an access token with POST /validate.")
        print("="*70 + "\n")

    except Exception as e:
        print(f"Error creating API key: {str(e)}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
