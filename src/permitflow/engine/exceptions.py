"""
Exception and Error Definitions Module

Defines the exception hierarchy for permit negotiation: capability probing,
nonce resolution, wallet signing and binary packing. All exceptions inherit
from ``PermitError`` for unified handling.

Exception Hierarchy:
    PermitError (root)
    ├── UserRejectedError
    ├── CapabilityNotSupportedError
    ├── NonceResolutionError
    ├── SigningError
    ├── PackingInvariantError
    ├── ChainReadError
    ├── WalletRPCError
    └── ConfigurationError

Every taxonomy error carries the ``stage`` of the flow it belongs to and the
numeric ``code`` reported to callers. The orchestrator converts these into
status/code pairs, except ``PackingInvariantError`` which always propagates.
"""

from typing import Optional

from ..schemas.bases import PermitStage, StatusCodes


class PermitError(Exception):
    """
    Root exception class for all permitflow exceptions.

    Attributes:
        stage: Flow step the error is attributed to (``None`` when not
               tied to a specific step)
        code: Numeric status code reported to callers
    """

    stage: Optional[PermitStage] = None
    code: int = StatusCodes.ERROR


class UserRejectedError(PermitError):
    """
    Raised when the wallet or user explicitly declines a signature request.

    Detected from the provider error code ``4001``. Never retried
    automatically.
    """

    stage = PermitStage.SIGNING
    code = StatusCodes.USER_REJECTED_REQUEST


class CapabilityNotSupportedError(PermitError):
    """
    Raised when a token lacks the permit interface a forced mode requires.

    Fatal for that token; no fallback to another scheme once a specific
    mode was requested.
    """

    stage = PermitStage.CAPABILITY_PROBE


class NonceResolutionError(PermitError):
    """
    Raised when the next Permit2 nonce cannot be determined.

    This includes scenarios such as:
    - RPC failure while reading the nonce bitmap or proxy
    - Bitmap scan exceeding its word iteration ceiling
    - A derived nonce requested before any anchor nonce was resolved

    Treated as transient; callers may retry the whole flow.
    """

    stage = PermitStage.NONCE_RESOLUTION


class SigningError(PermitError):
    """
    Raised when a wallet/provider fails to sign for any reason other than
    an explicit user rejection.
    """

    stage = PermitStage.SIGNING


class PackingInvariantError(PermitError):
    """
    Raised on internal invariant violations while assembling permit data.

    This includes scenarios such as:
    - Per-token mode list length differs from the token list
    - Payload type does not match the scheme being packed
    - Field value out of range for its ABI type

    Programmer error; aborts the whole batch.
    """

    stage = PermitStage.PACKING


class ChainReadError(PermitError):
    """
    Raised when a read-only contract call fails.

    This includes scenarios such as:
    - Function missing on the target contract (revert / bad output)
    - RPC call timeout or connectivity issues

    Attributes:
        address: Contract address that was called
        function_name: Contract function that was called
    """

    def __init__(self, message: str, *, address: Optional[str] = None, function_name: Optional[str] = None):
        super().__init__(message)
        self.address = address
        self.function_name = function_name


class WalletRPCError(PermitError):
    """
    Raised by ``Web3WalletClient`` when the wallet provider answers a
    signing request with a JSON-RPC error object.

    Attributes:
        code: Provider error code (``4001`` for user rejection)
    """

    def __init__(self, message: str, code: int):
        super().__init__(message)
        self.code = code


class ConfigurationError(PermitError):
    """
    Raised when configuration is missing or invalid.

    This includes scenarios such as:
    - No RPC URL available for a chain
    - Malformed environment overrides
    """
