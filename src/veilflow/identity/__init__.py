"""Test identity exports."""

from veilflow.identity.store import (
    Identity,
    IdentitySet,
    IdentityStore,
    generate_identity,
    load_keypair_file,
    verify_signature,
    write_keypair_file,
)

__all__ = [
    "Identity",
    "IdentitySet",
    "IdentityStore",
    "generate_identity",
    "load_keypair_file",
    "verify_signature",
    "write_keypair_file",
]
