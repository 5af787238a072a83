"""
Tally Sync - scheduled export of Tally data to a remote backend.

This package fetches master and transaction collections from TallyPrime
over its HTTP XML interface and relays them to a backend that is gated by an
email OTP login. Credentials are RSA-OAEP encrypted before they are sent.

Key Features:
- Ten hand-authored collection exports (Ledgers, Vouchers, Stock Items, ...)
- Date window and active company injected as Tally static variables
- OTP login with a persisted 30 day session
- Interruptible periodic worker with per-table failure isolation

Usage:
    # Configure, log in, then start the worker
    python -m tally_sync --setup
    python -m tally_sync --login
    python -m tally_sync
"""

__version__ = "1.0.0"

from .auth import AuthManager, AuthState
from .client import TallyClient
from .config import SyncConfig
from .crypto import CryptoEnvelope
from .tables import TableDescriptor, TableKind
from .worker import SyncWorker

__all__ = [
    "AuthManager",
    "AuthState",
    "CryptoEnvelope",
    "SyncConfig",
    "SyncWorker",
    "TableDescriptor",
    "TableKind",
    "TallyClient",
    "__version__",
]
