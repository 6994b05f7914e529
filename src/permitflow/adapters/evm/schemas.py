"""
EVM Permit Schema Models

Pydantic models for the permit negotiation engine.  All classes inherit from
``CanonicalModel`` in ``schemas.bases``.

Enumerations:
    - PermitMode: Scheme requested by the caller (``AutoPermit`` lets the
      engine decide per token).
    - PermitScheme: Scheme actually used for a token, including the
      ``DefaultPermit`` no-op sentinel.
    - SchemeTag: uint8 discriminant written in front of packed permit data.

Request classes:
    - TokenAmount: Caller-facing ``(address, amount)`` entry of a batch.
    - TokenAuthorizationRequest: Immutable per-token input built by the
      orchestrator (adds owner, spender, chain and batch position).
    - PermitBatchRequest: One authorization request covering all input tokens.
    - GaslessSwapContext / GaslessBridgeContext: Off-chain context bound into
      gasless witnesses and intents.

Result classes:
    - CapabilityResult: EIP-2612 probe verdict.
    - TokenPermitResult: Packed permit data resolved for one token.
    - PermitBatchResult: Status/code pair plus the tokens resolved so far.
    - GaslessIntentSignature: Signed gasless intent (signature, nonce, deadline).
"""

import string
from enum import Enum, IntEnum
from typing import List, Optional, Union

from pydantic import ConfigDict, Field, ValidationInfo, field_validator

from ...schemas.bases import CanonicalModel, PermitStage, StatusCodes, TxnStatus


class PermitMode(str, Enum):
    """Authorization mode requested by the caller."""
    AUTO = "AutoPermit"
    EIP2612 = "EIP2612Permit"
    PERMIT_SINGLE = "PermitSingle"
    PERMIT_WITNESS_TRANSFER = "PermitWitnessTransferFrom"
    PERMIT_BATCH_WITNESS_TRANSFER = "PermitBatchWitnessTransferFrom"


class PermitScheme(str, Enum):
    """
    Authorization scheme chosen for a single token.

    Exactly one scheme is chosen per token per request.  The value of each
    Permit2 member doubles as the EIP-712 ``primaryType`` it signs.
    """
    NATIVE_PERMIT = "EIP2612Permit"
    PERMIT2_SINGLE = "PermitSingle"
    PERMIT2_WITNESS_TRANSFER = "PermitWitnessTransferFrom"
    PERMIT2_BATCH_WITNESS_TRANSFER = "PermitBatchWitnessTransferFrom"
    DEFAULT_PERMIT = "DefaultPermit"


class SchemeTag(IntEnum):
    """uint8 discriminant of packed permit data.  Changing it breaks the protocol."""
    NATIVE_PERMIT = 0
    PERMIT2_SINGLE = 1
    PERMIT2_WITNESS_TRANSFER = 2
    PERMIT2_BATCH_WITNESS_TRANSFER = 3


def check_hex_string(value: str, field_name: str, hex_chars: int) -> str:
    """
    Validate a 0x-prefixed fixed-width hex string and return it unchanged.

    Raises:
        ValueError: Missing prefix, wrong length or non-hex characters.
    """
    if not value.startswith("0x"):
        raise ValueError(f"{field_name} must be 0x-prefixed")
    if len(value) != hex_chars + 2:
        raise ValueError(
            f"{field_name} must be {hex_chars + 2} characters (0x + {hex_chars} hex), got {len(value)}"
        )
    if not all(char in string.hexdigits for char in value[2:]):
        raise ValueError(f"{field_name} is not valid hexadecimal")
    return value


class TokenAmount(CanonicalModel):
    """
    One input token of a batch.

    Attributes:
        address: ERC-20 token address, or a native-currency sentinel.
        amount: Amount in the token's smallest unit.
    """

    address: str = Field(..., description="Token contract address (0x-prefixed)")
    amount: int = Field(..., ge=0, description="Amount in the token's smallest unit")

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return check_hex_string(v, "address", 40)


class TokenAuthorizationRequest(CanonicalModel):
    """
    Immutable per-token authorization input.

    Constructed fresh by the orchestrator for every token of a batch.

    Attributes:
        token: Token contract address.
        amount: Amount to authorize (already aggregated for one-to-many leg 0).
        chain_id: EVM network ID.
        owner: Token owner (the signing account).
        spender: Contract that will pull the funds.
        position_index: 0-based order among the batch.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    token: str = Field(..., description="Token contract address")
    amount: int = Field(..., ge=0, description="Amount to authorize")
    chain_id: int = Field(..., ge=1, description="EVM network ID")
    owner: str = Field(..., description="Token owner address")
    spender: str = Field(..., description="Contract that pulls the funds")
    position_index: int = Field(default=0, ge=0, description="0-based position in the batch")


class GaslessSwapContext(CanonicalModel):
    """
    Context of a gasless swap, bound into witnesses and intents.

    Hash fields are 0x-prefixed bytes32 hex strings.
    """

    tx_type: str = Field(default="swap", frozen=True)
    tx_id: str = Field(..., description="Transaction identifier (bytes32)")
    executor_fees_hash: str = Field(..., description="Hash of the executor fee data (bytes32)")
    swap_data_hash: str = Field(..., description="Hash of the swap data (bytes32)")

    @field_validator("tx_id", "executor_fees_hash", "swap_data_hash")
    @classmethod
    def validate_hash(cls, v: str, info: ValidationInfo) -> str:
        return check_hex_string(v, info.field_name, 64)


class GaslessBridgeContext(CanonicalModel):
    """
    Context of a gasless bridge (optionally with a source swap).

    ``swap_data_hash`` is absent for a pure bridge.
    """

    tx_type: str = Field(default="bridge", frozen=True)
    tx_id: str = Field(..., description="Transaction identifier (bytes32)")
    executor_fees_hash: str = Field(..., description="Hash of the executor fee data (bytes32)")
    adapter_data_hash: str = Field(..., description="Hash of the bridge adapter data (bytes32)")
    swap_data_hash: Optional[str] = Field(None, description="Hash of the swap data (bytes32)")

    @field_validator("tx_id", "executor_fees_hash", "adapter_data_hash", "swap_data_hash")
    @classmethod
    def validate_hash(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        if v is None:
            return v
        return check_hex_string(v, info.field_name, 64)


GaslessContext = Union[GaslessSwapContext, GaslessBridgeContext]


class PermitBatchRequest(CanonicalModel):
    """
    Authorization request covering every input token of one transaction.

    Attributes:
        chain_id: EVM network ID.
        owner: Signing account that owns the tokens.
        spender: Contract that will pull the funds.
        tokens: Input tokens in transaction order.
        mode: Requested scheme; ``AUTO`` lets the engine decide per token.
        token_modes: Optional per-token override of ``mode``.  Must have the
                     same length as ``tokens``.
        deadline: Signature deadline; defaults to now + signature expiry.
        expiration: Allowance expiration for ``PermitSingle``; defaults to
                    max uint48.
        gasless: Gasless context; switches Permit2 witnesses to the gasless
                 layouts.
    """

    chain_id: int = Field(..., ge=1, description="EVM network ID")
    owner: str = Field(..., description="Token owner / signing account")
    spender: str = Field(..., description="Contract that pulls the funds")
    tokens: List[TokenAmount] = Field(default_factory=list, description="Input tokens")
    mode: PermitMode = Field(default=PermitMode.AUTO, description="Requested permit mode")
    token_modes: Optional[List[PermitMode]] = Field(None, description="Per-token mode overrides")
    deadline: Optional[int] = Field(None, ge=0, description="Signature deadline (unix seconds)")
    expiration: Optional[int] = Field(None, ge=0, description="PermitSingle allowance expiration")
    gasless: Optional[Union[GaslessSwapContext, GaslessBridgeContext]] = Field(
        None, description="Gasless transaction context"
    )

    @field_validator("owner", "spender")
    @classmethod
    def validate_address(cls, v: str, info: ValidationInfo) -> str:
        return check_hex_string(v, info.field_name, 40)


class CapabilityResult(CanonicalModel):
    """
    Structural EIP-2612 capability of a token.

    Attributes:
        supports_native_permit: ``DOMAIN_SEPARATOR()`` and ``nonces()`` both
                                answered.
        domain_version: Value of ``version()`` when available.  ``None``
                        means absent; the domain builder defaults it to "1".
    """

    supports_native_permit: bool = Field(..., description="Token exposes the EIP-2612 interface")
    domain_version: Optional[str] = Field(None, description="EIP-712 domain version reported by the token")


class TokenPermitResult(CanonicalModel):
    """Permit data resolved for one input token."""

    token: str = Field(..., description="Token contract address")
    amount: int = Field(..., ge=0, description="Amount authorized by this token's permit data")
    position_index: int = Field(..., ge=0, description="0-based position in the batch")
    scheme: PermitScheme = Field(..., description="Scheme used for this token")
    permit_data: str = Field(..., description="0x-prefixed packed permit data")
    nonce: Optional[int] = Field(None, ge=0, description="Nonce signed for this token, if any")
    deadline: Optional[int] = Field(None, ge=0, description="Signature deadline, if any")


class GaslessIntentSignature(CanonicalModel):
    """Signed gasless user intent."""

    signature: str = Field(..., description="0x-prefixed 65-byte signature")
    nonce: int = Field(..., ge=0, description="Verifier nonce signed into the intent")
    deadline: int = Field(..., ge=0, description="Intent deadline (unix seconds)")
    primary_type: str = Field(..., description="EIP-712 primary type that was signed")


class PermitBatchResult(CanonicalModel):
    """
    Outcome of one authorization request.

    On failure ``tokens`` holds the results resolved before the failing token,
    so callers can show which tokens succeeded.
    """

    status: TxnStatus = Field(..., description="success / rejected / error")
    code: int = Field(..., description="Numeric status code")
    stage: Optional[PermitStage] = Field(None, description="Failing step, None on success")
    error_kind: Optional[str] = Field(None, description="Exception class that stopped the batch")
    message: Optional[str] = Field(None, description="Human-readable failure description")
    failed_index: Optional[int] = Field(None, description="Position of the token that failed")
    tokens: List[TokenPermitResult] = Field(default_factory=list, description="Resolved token permits")
    batch_permit_data: Optional[str] = Field(None, description="Packed batch permit data (single batch signature)")
    intent: Optional[GaslessIntentSignature] = Field(None, description="Signed gasless intent")

    def is_success(self) -> bool:
        return self.status == TxnStatus.SUCCESS and self.code == StatusCodes.SUCCESS

