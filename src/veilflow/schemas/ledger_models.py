"""Ledger transaction contracts consumed by the gateway."""

from __future__ import annotations

from typing import Annotated, Literal, Union
from uuid import uuid4

import orjson
from pydantic import Field

from veilflow.schemas.base import FrozenSchemaModel


class NativeTransfer(FrozenSchemaModel):
    kind: Literal["native_transfer"] = "native_transfer"
    source: str
    destination: str
    lamports: int = Field(ge=0)


class CreateTokenAccount(FrozenSchemaModel):
    kind: Literal["create_token_account"] = "create_token_account"
    payer: str
    owner: str
    mint: str


class TokenTransfer(FrozenSchemaModel):
    kind: Literal["token_transfer"] = "token_transfer"
    mint: str
    source_owner: str
    destination_owner: str
    amount: int = Field(ge=0)


class CloseTokenAccount(FrozenSchemaModel):
    kind: Literal["close_token_account"] = "close_token_account"
    mint: str
    owner: str
    destination: str


class WrapNative(FrozenSchemaModel):
    """Move lamports from the owner into its wrapped-native token account."""

    kind: Literal["wrap_native"] = "wrap_native"
    mint: str
    owner: str
    lamports: int = Field(ge=0)


Instruction = Annotated[
    Union[NativeTransfer, CreateTokenAccount, TokenTransfer, CloseTokenAccount, WrapNative],
    Field(discriminator="kind"),
]


class LedgerTransaction(FrozenSchemaModel):
    """Unsigned transaction: fee payer plus ordered instructions."""

    payer: str
    instructions: tuple[Instruction, ...] = ()
    nonce: str = Field(default_factory=lambda: uuid4().hex)

    def message_bytes(self) -> bytes:
        """Canonical bytes covered by signatures."""
        return orjson.dumps(self.model_dump(mode="json"), option=orjson.OPT_SORT_KEYS)

    def required_signers(self) -> list[str]:
        signers = [self.payer]
        for instruction in self.instructions:
            owner = _authority(instruction)
            if owner is not None and owner not in signers:
                signers.append(owner)
        return signers


class SignedTransaction(FrozenSchemaModel):
    transaction: LedgerTransaction
    signatures: dict[str, str] = Field(default_factory=dict)


def _authority(instruction: FrozenSchemaModel) -> str | None:
    if isinstance(instruction, NativeTransfer):
        return instruction.source
    if isinstance(instruction, TokenTransfer):
        return instruction.source_owner
    if isinstance(instruction, CloseTokenAccount):
        return instruction.owner
    if isinstance(instruction, WrapNative):
        return instruction.owner
    if isinstance(instruction, CreateTokenAccount):
        return instruction.payer
    return None
