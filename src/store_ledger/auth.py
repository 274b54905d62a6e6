"""Authorization capability injected into destructive operations.

The engine only ever asks an :class:`Authorizer` whether a secret is
acceptable. It never keeps, logs, or compares the secret itself.
"""

from __future__ import annotations

import argparse
import getpass
from typing import Optional, Protocol

import bcrypt

from . import log
from .core_logic import AuthorizationError

DEFAULT_HASH_ROUNDS = 12


class Authorizer(Protocol):
    """Anything that can vouch for a secret."""

    def check(self, secret: str) -> bool:
        ...


class HashedSecretAuthorizer:
    """Accept secrets matching the configured bcrypt hash.

    Only the hash is held, so configuration files never contain the
    plain-text admin secret.
    """

    def __init__(self, secret_hash: Optional[str]):
        self._hash = (secret_hash or "").strip()

    def check(self, secret: str) -> bool:
        if not self._hash or secret is None:
            return False
        try:
            return bcrypt.checkpw(secret.encode("utf-8"), self._hash.encode("utf-8"))
        except ValueError:
            log.error("Configured AdminSecretHash is not a valid bcrypt hash")
            return False


class DenyAllAuthorizer:
    """Authorizer used when no admin secret is configured."""

    def check(self, secret: str) -> bool:
        return False


def hash_secret(secret: str, *, rounds: int = DEFAULT_HASH_ROUNDS) -> str:
    """Return the bcrypt hash to put under ``[Security] AdminSecretHash``."""

    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(secret.encode("utf-8"), salt).decode("utf-8")


def authorizer_from_settings(settings) -> Authorizer:
    """Build the authorizer described by a :class:`ConfigSettings`."""

    if settings.admin_secret_hash:
        return HashedSecretAuthorizer(settings.admin_secret_hash)
    log.warning("No admin secret configured; destructive operations are disabled")
    return DenyAllAuthorizer()


def require_authorization(authorizer: Authorizer, secret: Optional[str], *, action: str) -> None:
    """Raise :class:`AuthorizationError` unless ``authorizer`` accepts ``secret``.

    Args:
        authorizer (Authorizer): Capability consulted for the decision.
        secret (str | None): Secret supplied by the operator.
        action (str): Description of the gated operation, used for logging.

    Raises:
        AuthorizationError: If the secret is missing or rejected.
    """

    if secret is None or not authorizer.check(secret):
        log.warning("Authorization denied for '%s'", action)
        raise AuthorizationError(f"Not authorized to {action}")
    log.info("Authorization granted for '%s'", action)


def main(argv=None) -> int:
    """Print the ``AdminSecretHash`` value for a secret typed at the prompt."""

    parser = argparse.ArgumentParser(description="Hash an admin secret for config.ini")
    parser.add_argument("--rounds", type=int, default=DEFAULT_HASH_ROUNDS)
    args = parser.parse_args(argv)
    secret = getpass.getpass("New admin secret: ")
    if not secret or secret != getpass.getpass("Repeat: "):
        print("[ERROR] Secrets are empty or do not match.")
        return 1
    print(f"AdminSecretHash = {hash_secret(secret, rounds=args.rounds)}")
    return 0
