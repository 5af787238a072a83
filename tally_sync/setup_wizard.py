"""
Interactive setup: writes config.json and checks the Tally connection.
"""
from __future__ import annotations
from pathlib import Path
from typing import Callable

from .client import TallyClient
from .config import DEFAULT_CONFIG_FILE, SyncConfig
from .errors import TallySyncError

Prompt = Callable[[str], str]
Echo = Callable[[str], None]


def _ask(prompt: Prompt, label: str, default: str) -> str:
    answer = prompt(f"{label} [{default}]: ").strip()
    return answer or default


def _ask_int(prompt: Prompt, echo: Echo, label: str, default: int) -> int:
    while True:
        answer = _ask(prompt, label, str(default))
        try:
            return int(answer)
        except ValueError:
            echo(f"  '{answer}' is not a number")


def run_setup(
    path: str | Path = DEFAULT_CONFIG_FILE,
    prompt: Prompt = input,
    echo: Echo = print,
) -> SyncConfig:
    """Prompt for every setting, save the config and test the connection."""
    echo("╔═══════════════════════════════════════════════╗")
    echo("║   Tally Sync Service - Setup                  ║")
    echo("╚═══════════════════════════════════════════════╝")
    echo("")

    config = SyncConfig.load(path)

    echo("=== Tally Configuration ===")
    config.tally_server = _ask(prompt, "Tally Server", config.tally_server)
    config.tally_port = _ask_int(prompt, echo, "Tally Port", config.tally_port)
    company = prompt("Company Name (leave empty to select at runtime): ").strip()
    config.tally_company = company or None

    echo("\n=== Sync Configuration ===")
    config.sync_interval_minutes = _ask_int(
        prompt, echo, "Sync Interval (minutes)", config.sync_interval_minutes
    )
    config.export_path = _ask(prompt, "Export Path", config.export_path or "./exports")

    echo("\n=== Backend Configuration ===")
    backend_url = _ask(prompt, "Backend Base URL", config.backend_url or "http://localhost:3001")
    config.backend_url = backend_url.rstrip("/")

    errors = config.validate()
    for error in errors:
        echo(f"  ! {error}")

    saved = config.save(path)
    echo(f"\n✅ Configuration saved to {saved}")
    echo("")

    echo("Testing Tally connection...")
    with TallyClient(config) as client:
        if client.test_connection():
            echo(f"✓ Successfully connected to Tally at {config.tally_server}:{config.tally_port}")
            try:
                companies = client.list_companies()
            except TallySyncError as e:
                echo(f"✗ Could not list companies: {e}")
            else:
                echo(f"✓ Found {len(companies)} company(ies):")
                for c in companies:
                    echo(f"  • {c.name}")
        else:
            echo(f"✗ Could not connect to Tally at {config.tally_server}:{config.tally_port}")
            echo("  Make sure Tally is running and XML interface is enabled")

    echo("")
    echo("Setup complete! You can now:")
    echo(f"  1. Login: python -m tally_sync --login {config.backend_url}")
    echo("  2. Start sync: python -m tally_sync")
    return config
