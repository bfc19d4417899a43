"""
Caller identity for the presale API.

Each account is an address plus a passphrase. Passphrases are stored as
PBKDF2-HMAC-SHA256 hashes (600 000 iterations by default) with a per-account salt,
never in plain text. Sessions are stored server-side in memory and bind a
256-bit URL-safe token to the address that logged in; every mutating route
acts on behalf of that address.
"""

import hashlib
import secrets
import time
from typing import Dict, Optional, Tuple

import structlog

from presale_app.services.units import normalize_address

logger = structlog.get_logger()

_ITERATIONS: int = 600_000
_iterations: int = _ITERATIONS
COOKIE_NAME: str = "presale_session"  # exported so main.py can import it

# ── Account store: { address -> (salt_hex, hash_hex) } ──
_accounts: Dict[str, Tuple[str, str]] = {}

# ── Session store: { token -> (address, expiry_unix_timestamp) } ──
_sessions: Dict[str, Tuple[str, float]] = {}
_session_ttl: int = 86_400   # 24 hours


def configure(session_ttl: int, iterations: int = _ITERATIONS) -> None:
    global _session_ttl, _iterations
    _session_ttl = int(session_ttl)
    _iterations = int(iterations)


def _hash(password: str, salt: str) -> str:
    dk = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt.encode("utf-8"),
        _iterations,
    )
    return dk.hex()


def register_account(address: str, password: str) -> bool:
    """Register an address. Returns False if it is already registered."""
    address = normalize_address(address)
    if address in _accounts:
        return False
    salt = secrets.token_hex(16)
    _accounts[address] = (salt, _hash(password, salt))
    logger.info("account_registered", address=address)
    return True


def verify_credentials(address: str, password: str) -> Optional[str]:
    """Constant-time credential check; returns the checksummed address on success."""
    address = normalize_address(address)
    salt, expected = _accounts.get(address, ("00" * 16, "00" * 32))
    # hash even for unknown addresses so timing doesn't leak which check failed
    password_ok = secrets.compare_digest(_hash(password, salt), expected)
    if address in _accounts and password_ok:
        return address
    return None


def create_session(address: str) -> str:
    """Generate a new session token for `address` and store it with an expiry."""
    token = secrets.token_urlsafe(32)   # 256-bit entropy
    _sessions[token] = (normalize_address(address), time.time() + _session_ttl)
    _cleanup_sessions()
    return token


def session_address(token: Optional[str]) -> Optional[str]:
    """Return the address bound to a valid, unexpired token."""
    if not token:
        return None
    entry = _sessions.get(token)
    if entry is None:
        return None
    address, expiry = entry
    if time.time() > expiry:
        del _sessions[token]
        return None
    return address


def delete_session(token: str) -> None:
    """Invalidate a session (logout)."""
    _sessions.pop(token, None)


def reset() -> None:
    """Drop every account and session (app rebuild, tests)."""
    _accounts.clear()
    _sessions.clear()


def _cleanup_sessions() -> None:
    """Purge expired sessions to prevent unbounded memory growth."""
    now = time.time()
    expired = [t for t, (_, exp) in list(_sessions.items()) if now > exp]
    for t in expired:
        del _sessions[t]
