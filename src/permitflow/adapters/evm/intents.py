"""
Gasless user intents.

For gasless transactions the executor contract verifies a user intent signed
under its own EIP-712 domain (``DZapVerifier``, salted).  The intent binds the
transaction hashes to a nonce kept by the verifier contract itself.
"""

import logging
from typing import Any, Dict, List

from eth_utils import keccak, to_bytes

from ...engine.exceptions import ChainReadError, NonceResolutionError
from .abis import get_verifier_abi
from .chain import ReadOnlyChainClient
from .schemas import GaslessContext, GaslessIntentSignature, GaslessSwapContext
from .signers import SignerHandle, sign_typed_data
from .standards import EIP712Domain, TypedData

logger = logging.getLogger(__name__)

GASLESS_DOMAIN_NAME = "DZapVerifier"
GASLESS_DOMAIN_VERSION = "1"
GASLESS_DOMAIN_SALT: bytes = keccak(text="DZap-v0.1")

SWAP_INTENT = "SignedGasLessSwapData"
BRIDGE_INTENT = "SignedGasLessBridgeData"
SWAP_BRIDGE_INTENT = "SignedGasLessSwapBridgeData"

_INTENT_HEAD = [
    {"name": "txId", "type": "bytes32"},
    {"name": "user", "type": "address"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
    {"name": "executorFeesHash", "type": "bytes32"},
]

INTENT_TYPES: Dict[str, List[Dict[str, str]]] = {
    SWAP_INTENT: _INTENT_HEAD + [{"name": "swapDataHash", "type": "bytes32"}],
    BRIDGE_INTENT: _INTENT_HEAD + [{"name": "adapterDataHash", "type": "bytes32"}],
    SWAP_BRIDGE_INTENT: _INTENT_HEAD + [
        {"name": "swapDataHash", "type": "bytes32"},
        {"name": "adapterDataHash", "type": "bytes32"},
    ],
}


def gasless_domain(chain_id: int, verifier: str) -> EIP712Domain:
    return EIP712Domain(
        name=GASLESS_DOMAIN_NAME,
        version=GASLESS_DOMAIN_VERSION,
        chainId=chain_id,
        verifyingContract=verifier,
        salt=GASLESS_DOMAIN_SALT,
    )


def intent_primary_type(context: GaslessContext) -> str:
    """Swap intent for swaps; swap-bridge when a bridge carries a swap hash; bridge otherwise."""
    if isinstance(context, GaslessSwapContext):
        return SWAP_INTENT
    if context.swap_data_hash:
        return SWAP_BRIDGE_INTENT
    return BRIDGE_INTENT


def build_intent_typed_data(
    *,
    chain_id: int,
    verifier: str,
    user: str,
    nonce: int,
    deadline: int,
    context: GaslessContext,
) -> TypedData:
    """
    Build the typed data of a gasless intent.

    Args:
        chain_id: EVM network ID.
        verifier: Executor contract verifying the intent (the spender).
        user: Signing account.
        nonce: Verifier nonce of ``user``.
        deadline: Intent deadline.
        context: Swap or bridge context.
    """
    primary_type = intent_primary_type(context)
    values: Dict[str, Any] = {
        "txId": context.tx_id,
        "user": user,
        "nonce": nonce,
        "deadline": deadline,
        "executorFeesHash": context.executor_fees_hash,
    }
    if primary_type in (SWAP_INTENT, SWAP_BRIDGE_INTENT):
        values["swapDataHash"] = context.swap_data_hash
    if primary_type in (BRIDGE_INTENT, SWAP_BRIDGE_INTENT):
        values["adapterDataHash"] = context.adapter_data_hash

    fields = INTENT_TYPES[primary_type]
    message = {}
    for entry in fields:
        value = values[entry["name"]]
        if entry["type"] == "bytes32" and isinstance(value, str):
            value = to_bytes(hexstr=value)
        message[entry["name"]] = value

    return TypedData(
        domain=gasless_domain(chain_id, verifier),
        types={primary_type: list(fields)},
        primary_type=primary_type,
        message=message,
    )


async def fetch_intent_nonce(client: ReadOnlyChainClient, verifier: str, user: str) -> int:
    """
    Read ``getNonce(user)`` from the verifier.

    Raises:
        NonceResolutionError: The read failed.
    """
    try:
        return int(await client.read_contract(verifier, get_verifier_abi(), "getNonce", (user,)))
    except ChainReadError as e:
        raise NonceResolutionError(f"Unable to read intent nonce for {user}: {e}") from e


async def sign_gasless_intent(
    *,
    client: ReadOnlyChainClient,
    signer: SignerHandle,
    chain_id: int,
    verifier: str,
    user: str,
    deadline: int,
    context: GaslessContext,
) -> GaslessIntentSignature:
    """
    Sign a gasless intent for ``user``.

    Raises:
        NonceResolutionError: The verifier nonce could not be read.
        UserRejectedError / SigningError: From the signer adapter.
    """
    nonce = await fetch_intent_nonce(client, verifier, user)
    typed_data = build_intent_typed_data(
        chain_id=chain_id,
        verifier=verifier,
        user=user,
        nonce=nonce,
        deadline=deadline,
        context=context,
    )
    signature = await sign_typed_data(
        signer,
        domain=typed_data.domain.to_dict(),
        types=typed_data.types,
        message=typed_data.message,
        account=user,
        primary_type=typed_data.primary_type,
    )
    logger.debug("signed %s intent for %s on chain %s", typed_data.primary_type, user, chain_id)
    return GaslessIntentSignature(
        signature="0x" + signature.hex(),
        nonce=nonce,
        deadline=deadline,
        primary_type=typed_data.primary_type,
    )
