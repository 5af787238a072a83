"""
Interactive login shell.

Drives the AuthManager primitives from a terminal. Only this module prompts;
``prompt`` and ``echo`` are injectable so the flow can be exercised without
a console.
"""
from __future__ import annotations
from typing import Callable
from loguru import logger

from .auth import AuthManager
from .errors import HttpError, TallySyncError

Prompt = Callable[[str], str]
Echo = Callable[[str], None]


def _banner(echo: Echo) -> None:
    echo("╔════════════════════════════════════════════╗")
    echo("║   Tally Sync Service - Login               ║")
    echo("╚════════════════════════════════════════════╝")
    echo("")


def choose_organisation(auth: AuthManager, prompt: Prompt = input, echo: Echo = print) -> None:
    """Let the user pick an organisation when the account has more than one."""
    try:
        organisations = auth.fetch_organisations()
    except HttpError as e:
        echo(f"Could not list organisations (status {e.status_code}).")
        return
    except TallySyncError as e:
        echo(f"Could not list organisations: {e}")
        return

    if not organisations:
        echo("No organisations are linked to this account.")
        return

    if len(organisations) == 1:
        chosen = organisations[0]
    else:
        echo("Organisations:")
        for i, org in enumerate(organisations, start=1):
            echo(f"  {i}. {org.organisation_code} (id {org.organisation_id})")
        answer = prompt(f"Select organisation [1-{len(organisations)}]: ").strip()
        try:
            chosen = organisations[int(answer) - 1]
        except (ValueError, IndexError):
            echo("Invalid selection; organisation not changed.")
            return

    auth.select_organisation(chosen.organisation_id)
    echo(f"Using organisation {chosen.organisation_code} (id {chosen.organisation_id})")


def interactive_login(auth: AuthManager, prompt: Prompt = input, echo: Echo = print) -> bool:
    """Full OTP login. Returns True when a valid session exists afterwards."""
    _banner(echo)

    if auth.is_authenticated():
        echo(f"Already authenticated as: {auth.user_email}")
        answer = prompt("Do you want to login with a different account? (y/n): ").strip().lower()
        if answer not in ("y", "yes"):
            return True

    echo("Fetching encryption key from backend...")
    if not auth.fetch_public_key():
        echo("Failed to fetch encryption key. Please ensure backend is running.")
        return False
    echo("✓ Encryption key fetched successfully")
    echo("")

    email = prompt("Enter your email: ").strip()
    if not email:
        echo("Email cannot be empty")
        return False

    echo(f"Sending OTP to {email}...")
    if not auth.send_otp(email):
        echo("Failed to send OTP. Please try again.")
        if auth.last_error:
            echo(f"  {auth.last_error}")
        return False
    echo("OTP sent successfully!")
    echo("")

    code = prompt("Enter the 6-digit OTP: ").strip()
    if not code:
        echo("OTP cannot be empty")
        return False

    echo("Validating OTP...")
    if not auth.validate_otp(email, code):
        echo("✗ Invalid OTP. Authentication failed.")
        return False

    echo("✓ Successfully authenticated!")
    logger.debug(f"Session stored in {auth.store.path}")
    choose_organisation(auth, prompt, echo)
    return True
