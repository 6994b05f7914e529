"""
Signer adapter.

Two signing conventions are supported and selected by the handle type the
caller passes in:

* ``LocalAccountSigner`` wraps an ``eth_account`` ``LocalAccount`` and signs
  in-process.
* ``WalletClientSigner`` wraps any object implementing
  ``TypedDataWalletClient`` (an external wallet).  ``Web3WalletClient``
  implements it over an ``AsyncWeb3`` provider with ``eth_signTypedData_v4``.

A provider error code ``4001`` (on the error or its cause) becomes
``UserRejectedError``; anything else becomes ``SigningError``.  Requests are
never retried.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable

from eth_account.signers.local import LocalAccount
from eth_utils import to_bytes
from web3 import AsyncWeb3

from ...engine.exceptions import SigningError, UserRejectedError, WalletRPCError
from ...schemas.bases import StatusCodes
from .standards import eip712_domain_fields

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 65


@runtime_checkable
class TypedDataWalletClient(Protocol):
    async def sign_typed_data(
        self,
        *,
        account: str,
        domain: Dict[str, Any],
        types: Dict[str, List[Dict[str, str]]],
        primary_type: str,
        message: Dict[str, Any],
    ) -> Union[str, bytes]:
        ...


@dataclass(frozen=True)
class LocalAccountSigner:
    """In-process signer holding an ``eth_account`` account."""
    account: LocalAccount


@dataclass(frozen=True)
class WalletClientSigner:
    """External wallet reached through a ``TypedDataWalletClient``."""
    client: TypedDataWalletClient


SignerHandle = Union[LocalAccountSigner, WalletClientSigner]


def _json_safe(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value


def build_full_message(
    domain: Dict[str, Any],
    types: Dict[str, List[Dict[str, str]]],
    primary_type: str,
    message: Dict[str, Any],
) -> Dict[str, Any]:
    """Assemble the ``eth_signTypedData_v4`` envelope, adding ``EIP712Domain`` from the domain keys."""
    message_types = {name: fields for name, fields in types.items() if name != "EIP712Domain"}
    return {
        "types": {"EIP712Domain": eip712_domain_fields(domain), **message_types},
        "primaryType": primary_type,
        "domain": domain,
        "message": message,
    }


class Web3WalletClient:
    """
    ``TypedDataWalletClient`` over an ``AsyncWeb3`` provider.

    Sends ``eth_signTypedData_v4`` with the JSON-encoded envelope.  Integers
    are sent as decimal strings so uint256 values survive JavaScript wallets.
    """

    def __init__(self, w3: AsyncWeb3):
        self.w3 = w3

    async def sign_typed_data(
        self,
        *,
        account: str,
        domain: Dict[str, Any],
        types: Dict[str, List[Dict[str, str]]],
        primary_type: str,
        message: Dict[str, Any],
    ) -> str:
        payload = build_full_message(domain, types, primary_type, message)
        response = await self.w3.provider.make_request(
            "eth_signTypedData_v4", [account, json.dumps(_json_safe(payload))]
        )
        error = response.get("error")
        if error:
            raise WalletRPCError(error.get("message", "wallet error"), int(error.get("code", StatusCodes.ERROR)))
        return response["result"]


def _error_code(error: Optional[BaseException]) -> Optional[int]:
    if error is None:
        return None
    code = getattr(error, "code", None)
    if code is None:
        rpc_response = getattr(error, "rpc_response", None)
        if isinstance(rpc_response, dict):
            code = (rpc_response.get("error") or {}).get("code")
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def is_user_rejection(error: BaseException) -> bool:
    """True when the error or its cause carries provider code 4001."""
    return StatusCodes.USER_REJECTED_REQUEST in (_error_code(error), _error_code(error.__cause__))


def _to_signature_bytes(raw: Union[str, bytes]) -> bytes:
    signature = to_bytes(hexstr=raw) if isinstance(raw, str) else bytes(raw)
    if len(signature) != SIGNATURE_LENGTH:
        raise SigningError(f"Expected a {SIGNATURE_LENGTH}-byte signature, got {len(signature)} bytes")
    return signature


async def sign_typed_data(
    signer: SignerHandle,
    *,
    domain: Dict[str, Any],
    types: Dict[str, List[Dict[str, str]]],
    message: Dict[str, Any],
    account: str,
    primary_type: str,
) -> bytes:
    """
    Sign EIP-712 typed data with ``signer``.

    Args:
        signer: Local account or wallet client handle.
        domain: Domain values (``EIP712Domain.to_dict()``).
        types: Struct definitions; an ``EIP712Domain`` entry is ignored.
        message: Primary struct values.
        account: Address expected to sign.
        primary_type: Struct being signed.

    Returns:
        bytes: 65-byte ``r || s || v`` signature.

    Raises:
        UserRejectedError: The wallet reported code 4001.
        SigningError: Any other failure.
    """
    try:
        if isinstance(signer, LocalAccountSigner):
            full_message = build_full_message(domain, types, primary_type, message)
            signed = signer.account.sign_typed_data(full_message=full_message)
            return _to_signature_bytes(bytes(signed.signature))
        if isinstance(signer, WalletClientSigner):
            raw = await signer.client.sign_typed_data(
                account=account,
                domain=domain,
                types=types,
                primary_type=primary_type,
                message=message,
            )
            return _to_signature_bytes(raw)
    except (UserRejectedError, SigningError):
        raise
    except Exception as e:
        if is_user_rejection(e):
            logger.info("signature request for %s rejected by user", primary_type)
            raise UserRejectedError(f"User rejected {primary_type} signature request") from e
        logger.error("signing %s for %s failed: %s", primary_type, account, e)
        raise SigningError(f"Failed to sign {primary_type}: {e}") from e

    raise TypeError(f"Unsupported signer handle: {type(signer).__name__}")
