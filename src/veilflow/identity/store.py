"""Ephemeral test identities A, B and C with file-backed persistence."""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import base58
import orjson
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from veilflow.constants import IDENTITY_LABELS, VIEW_KEY_MESSAGE
from veilflow.errors import MissingIdentity
from veilflow.schemas.ledger_models import LedgerTransaction, SignedTransaction

LOGGER = logging.getLogger(__name__)

SECRET_KEY_SIZE = 64


class Identity:
    """Signing identity; key material stays inside this object."""

    __slots__ = ("_label", "_signing_key", "_address", "_view_key")

    def __init__(self, label: str, signing_key: SigningKey) -> None:
        self._label = label
        self._signing_key = signing_key
        self._address = base58.b58encode(bytes(signing_key.verify_key)).decode("ascii")
        self._view_key: str | None = None

    @property
    def label(self) -> str:
        return self._label

    @property
    def address(self) -> str:
        return self._address

    @property
    def display_name(self) -> str:
        return f"Wallet {self._label}" if self._label in IDENTITY_LABELS else self._label

    @property
    def view_key(self) -> str:
        """Recipient view capability derived from a signed domain message."""
        if self._view_key is None:
            signature = self.sign_message(VIEW_KEY_MESSAGE)
            self._view_key = hashlib.sha256(signature).hexdigest()
        return self._view_key

    def sign_message(self, message: bytes) -> bytes:
        """Return a detached ed25519 signature over ``message``."""
        return self._signing_key.sign(message).signature

    def sign_transaction(self, transaction: LedgerTransaction | SignedTransaction) -> SignedTransaction:
        """Add this identity's signature to a (possibly partially signed) transaction."""
        if isinstance(transaction, SignedTransaction):
            unsigned = transaction.transaction
            signatures = dict(transaction.signatures)
        else:
            unsigned = transaction
            signatures = {}
        signature = self.sign_message(unsigned.message_bytes())
        signatures[self._address] = base58.b58encode(signature).decode("ascii")
        return SignedTransaction(transaction=unsigned, signatures=signatures)

    def __repr__(self) -> str:
        return f"Identity(label={self._label!r}, address={self._address!r})"


def verify_signature(address: str, message: bytes, signature: bytes) -> bool:
    """Check a detached signature against a base58 address."""
    try:
        VerifyKey(base58.b58decode(address)).verify(message, signature)
    except (BadSignatureError, ValueError):
        return False
    return True


@dataclass(frozen=True)
class IdentitySet:
    """Labeled handles for the (possibly partial) set of test identities."""

    a: Identity | None = None
    b: Identity | None = None
    c: Identity | None = None

    def get(self, label: str) -> Identity | None:
        return {"A": self.a, "B": self.b, "C": self.c}.get(label)

    def require(self, label: str) -> Identity:
        identity = self.get(label)
        if identity is None:
            raise MissingIdentity([label])
        return identity

    def missing(self, labels: tuple[str, ...] | list[str] = IDENTITY_LABELS) -> list[str]:
        return [label for label in labels if self.get(label) is None]

    @property
    def present(self) -> list[Identity]:
        return [identity for identity in (self.a, self.b, self.c) if identity is not None]

    @property
    def is_complete(self) -> bool:
        return not self.missing()

    def address_labels(self) -> dict[str, str]:
        """Map of address -> display label, for log readability."""
        return {identity.address: identity.display_name for identity in self.present}


def identity_from_secret(label: str, secret: bytes) -> Identity:
    """Build an identity from a 64-byte (seed + public key) or 32-byte seed secret."""
    if len(secret) not in (32, SECRET_KEY_SIZE):
        raise ValueError(f"Secret key must be 32 or 64 bytes, got {len(secret)}")
    signing_key = SigningKey(secret[:32])
    if len(secret) == SECRET_KEY_SIZE and bytes(signing_key.verify_key) != secret[32:]:
        raise ValueError("Secret key public half does not match its seed")
    return Identity(label, signing_key)


def load_keypair_file(path: Path, *, label: str = "operator") -> Identity:
    """Load a keypair stored as a JSON array of 64 integers."""
    raw = orjson.loads(path.read_bytes())
    if not isinstance(raw, list):
        raise ValueError(f"Keypair file must contain a JSON array: {path}")
    if not all(isinstance(value, int) and 0 <= value <= 255 for value in raw):
        raise ValueError(f"Keypair file must contain byte values only: {path}")
    return identity_from_secret(label, bytes(raw))


def write_keypair_file(path: Path, identity: Identity) -> None:
    """Persist an identity in the JSON array keypair format."""
    secret = _secret_bytes(identity)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    # O_CREAT mode does not apply to an existing file.
    os.fchmod(fd, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(orjson.dumps(list(secret)))


def generate_identity(label: str) -> Identity:
    return Identity(label, SigningKey.generate())


def _secret_bytes(identity: Identity) -> bytes:
    signing_key = identity._signing_key  # noqa: SLF001
    return bytes(signing_key) + bytes(signing_key.verify_key)


class IdentityStore:
    """Generates, persists, restores and resets identities A, B and C."""

    def __init__(self, storage_dir: Path) -> None:
        self.storage_dir = storage_dir
        self._current = IdentitySet()

    @property
    def current(self) -> IdentitySet:
        return self._current

    def generate(self) -> IdentitySet:
        """Create three fresh identities, overwriting any persisted ones."""
        identities = {label: generate_identity(label) for label in IDENTITY_LABELS}
        for label, identity in identities.items():
            write_keypair_file(self._path_for(label), identity)
        self._current = IdentitySet(a=identities["A"], b=identities["B"], c=identities["C"])
        LOGGER.info("Generated test wallets: %s", self._current.address_labels())
        return self._current

    def restore(self) -> IdentitySet | None:
        """Load persisted identities; any subset may be absent."""
        restored: dict[str, Identity] = {}
        for label in IDENTITY_LABELS:
            path = self._path_for(label)
            if not path.exists():
                continue
            try:
                restored[label] = load_keypair_file(path, label=label)
            except (ValueError, orjson.JSONDecodeError) as exc:
                LOGGER.warning("Ignoring unreadable keypair for wallet %s: %s", label, exc)
        if not restored:
            self._current = IdentitySet()
            return None
        self._current = IdentitySet(
            a=restored.get("A"), b=restored.get("B"), c=restored.get("C")
        )
        return self._current

    def reset(self) -> None:
        """Clear persisted and in-memory identities unconditionally."""
        for label in IDENTITY_LABELS:
            self._path_for(label).unlink(missing_ok=True)
        self._current = IdentitySet()
        LOGGER.info("Reset test wallets")

    def sign(self, identity: Identity, payload: bytes) -> bytes:
        """Sign an arbitrary authorization payload on behalf of ``identity``."""
        return identity.sign_message(payload)

    def _path_for(self, label: str) -> Path:
        return self.storage_dir / f"wallet_{label.lower()}.json"
