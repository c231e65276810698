#!/usr/bin/env python3
"""Drive the passwordless flow from a terminal, for manual testing against a user pool.

Usage:
    USER_POOL_CLIENT_ID=abc123 AWS_REGION=eu-west-1 python scripts/passwordless_login.py register +15551230000
    python scripts/passwordless_login.py login +15551230000
    python scripts/passwordless_login.py whoami
    python scripts/passwordless_login.py set-email a@b.com
    python scripts/passwordless_login.py set-names Ada Lovelace
    python scripts/passwordless_login.py logout

Environment Variables:
    USER_POOL_CLIENT_ID: App client ID of the user pool (required)
    AWS_REGION: Region of the user pool (default us-east-1)
    CREDENTIAL_STORE_DIR: Where the session token is kept (default ~/.passwordless)
"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from dataclasses import asdict
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def run(args: argparse.Namespace) -> int:
    # Import here to avoid loading config before env vars are set
    from passwordless.service.errors import AuthError
    from passwordless.service.runtime import get_runtime

    runtime = get_runtime()
    flow = runtime.new_flow()
    try:
        if args.command == "register":
            await flow.register(args.username, args.phone or args.username)
            print(f"Registered {args.username}")
        elif args.command == "login":
            challenge = await flow.initiate(args.username)
            prompt = "Code: " if challenge.already_enrolled else "Code sent to your phone: "
            answer = getpass.getpass(prompt).strip()
            await flow.respond(challenge.session_handle, args.username, answer)
            print("Signed in")
        elif args.command == "whoami":
            attributes = await runtime.profile.get_attributes()
            for key, value in asdict(attributes).items():
                print(f"{key}: {value if value is not None else '-'}")
        elif args.command == "set-email":
            await runtime.profile.update_email(args.email)
            print("Email updated; confirm it with the code the provider sends")
        elif args.command == "set-names":
            await runtime.profile.update_names(args.given_name, args.family_name)
            print("Names updated")
        elif args.command == "logout":
            await flow.sign_out()
            print("Signed out")
        return 0
    except AuthError as exc:
        print(f"Error [{exc.error_code}]: {exc.message}", file=sys.stderr)
        return 1
    finally:
        await runtime.aclose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Passwordless challenge login")
    sub = parser.add_subparsers(dest="command", required=True)

    register = sub.add_parser("register", help="Create an identity")
    register.add_argument("username")
    register.add_argument("--phone", help="Contact phone number (defaults to username)")

    login = sub.add_parser("login", help="Sign in with a one-time code")
    login.add_argument("username")

    sub.add_parser("whoami", help="Show the signed-in user's attributes")

    set_email = sub.add_parser("set-email", help="Change the email address")
    set_email.add_argument("email")

    set_names = sub.add_parser("set-names", help="Change given and family name")
    set_names.add_argument("given_name")
    set_names.add_argument("family_name")

    sub.add_parser("logout", help="Forget the stored session")

    args = parser.parse_args()
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
