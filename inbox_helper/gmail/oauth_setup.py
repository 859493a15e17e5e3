"""Terminal OAuth setup for Gmail access

Runs Google's installed-app flow in a local browser and stores the resulting
token, encrypted, for one user id.

Usage:
    inbox-helper-oauth                       # Setup for local-user
    inbox-helper-oauth --user-id <google-sub>
    inbox-helper-oauth --revoke              # Delete stored token

Requirements:
    - INBOX_HELPER_ENCRYPTION_KEY environment variable must be set
    - OAuth client secrets (Desktop app) at INBOX_HELPER_CLIENT_SECRETS
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from google_auth_oauthlib.flow import InstalledAppFlow

from inbox_helper.config import GMAIL_SCOPES, GOOGLE_CLIENT_SECRETS_FILE, LOCAL_USER_ID
from inbox_helper.gmail.client import token_from_credentials
from inbox_helper.infrastructure.database import init_database
from inbox_helper.storage.token_repository import CredentialEncryptionError, TokenRepository


def print_banner() -> None:
    print("=" * 60)
    print("          Inbox Helper - Gmail OAuth Setup")
    print("=" * 60)
    print()


def check_prerequisites(client_secrets_file: str) -> list[str]:
    """Return a list of problems; empty when setup can proceed."""
    errors = []

    if not os.getenv("INBOX_HELPER_ENCRYPTION_KEY"):
        errors.append(
            "INBOX_HELPER_ENCRYPTION_KEY environment variable not set.\n"
            "   Generate one with:\n"
            '   python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
        )

    if not Path(client_secrets_file).exists():
        errors.append(
            f"OAuth client secrets not found at {client_secrets_file}\n"
            "   Download from Google Cloud Console:\n"
            "   1. Go to https://console.cloud.google.com/apis/credentials\n"
            "   2. Create OAuth 2.0 Client ID (Desktop app type)\n"
            "   3. Save the JSON there or point INBOX_HELPER_CLIENT_SECRETS at it"
        )

    return errors


def setup_oauth(user_id: str, client_secrets_file: str, port: int = 8080) -> None:
    print_banner()

    errors = check_prerequisites(client_secrets_file)
    if errors:
        print("Prerequisites not met:\n")
        for error in errors:
            print(error)
            print()
        sys.exit(1)

    init_database()
    tokens = TokenRepository()

    if tokens.get_token(user_id) is not None:
        print(f"User '{user_id}' already has a stored token")
        response = input("Overwrite existing token? [y/N]: ").strip().lower()
        if response != "y":
            print("Setup cancelled")
            sys.exit(0)
        print()

    print(f"Setting up Gmail OAuth for user: {user_id}")
    print("A browser window will open for authorization.")
    print()

    try:
        flow = InstalledAppFlow.from_client_secrets_file(client_secrets_file, scopes=GMAIL_SCOPES)
        credentials = flow.run_local_server(
            host="localhost",
            port=port,
            authorization_prompt_message="Please visit this URL to authorize: {url}",
            success_message="Authorization successful! You can close this window.",
            open_browser=True,
        )
    except KeyboardInterrupt:
        print("\nSetup cancelled by user")
        sys.exit(1)

    tokens.save_token(user_id, token_from_credentials(credentials))

    print()
    print("OAuth setup successful!")
    print(f"   User: {user_id}")
    print(f"   Scopes: {', '.join(credentials.scopes or [])}")
    print()
    print("The token has been encrypted and stored in the database.")


def revoke_oauth(user_id: str) -> None:
    print_banner()
    init_database()
    if TokenRepository().delete_token(user_id):
        print(f"Token for '{user_id}' deleted")
    else:
        print(f"No stored token for '{user_id}'")


def main(argv: list[str] | None = None) -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Authorize Gmail access for Inbox Helper")
    parser.add_argument("--user-id", default=LOCAL_USER_ID, help="User id to store the token for")
    parser.add_argument(
        "--client-secrets",
        default=os.getenv("INBOX_HELPER_CLIENT_SECRETS", GOOGLE_CLIENT_SECRETS_FILE),
        help="Path to the OAuth client secrets JSON",
    )
    parser.add_argument("--port", type=int, default=8080, help="Local redirect port")
    parser.add_argument("--revoke", action="store_true", help="Delete the stored token")
    args = parser.parse_args(argv)

    try:
        if args.revoke:
            revoke_oauth(args.user_id)
        else:
            setup_oauth(args.user_id, args.client_secrets, port=args.port)
    except CredentialEncryptionError as e:
        print(f"\n{e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
