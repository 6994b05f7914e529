"""
EVM Permit Signing Flows

One coroutine per scheme.  Each one gathers the on-chain values it needs,
builds the typed data, asks the signer adapter for a signature and packs the
result into permit data.

Exported helpers:
    - sign_native_permit: EIP-2612 ``Permit`` on the token itself.
    - sign_permit_single: Permit2 ``PermitSingle`` allowance approval.
    - sign_witness_transfer: Permit2 ``PermitWitnessTransferFrom`` for one token.
    - sign_batch_witness_transfer: Permit2 ``PermitBatchWitnessTransferFrom``.
    - select_witness: Witness bound for a plain or gasless transaction.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ...engine.exceptions import PackingInvariantError
from .capabilities import fetch_native_permit_metadata
from .chain import ReadOnlyChainClient
from .constants import MAX_UINT160
from .nonces import NonceResolver
from .packing import (
    NativePermitPayload,
    Permit2BatchWitnessTransferPayload,
    Permit2SinglePayload,
    Permit2WitnessTransferPayload,
    pack,
    split_signature,
)
from .schemas import GaslessBridgeContext, GaslessContext, GaslessSwapContext, PermitScheme
from .signers import SignerHandle, sign_typed_data
from .standards import (
    BRIDGE_WITNESS,
    SWAP_WITNESS,
    TRANSFER_WITNESS,
    BoundWitness,
    NativePermitValues,
    PermitBatchTransferValues,
    PermitSingleValues,
    PermitTransferValues,
    TypedData,
    build_typed_data,
)

logger = logging.getLogger(__name__)


@dataclass
class SignedPermit:
    """
    Outcome of one signing flow.

    Attributes:
        scheme: Scheme that was signed.
        permit_data: Packed ``(tag, inner)`` bytes.
        nonce: Nonce embedded in the signed message.
        deadline: Signature deadline embedded in the signed message.
        typed_data: The typed data that was signed.
    """
    scheme: PermitScheme
    permit_data: bytes
    nonce: int
    deadline: int
    typed_data: TypedData


async def _sign(signer: SignerHandle, typed_data: TypedData, owner: str) -> bytes:
    return await sign_typed_data(
        signer,
        domain=typed_data.domain.to_dict(),
        types=typed_data.types,
        message=typed_data.message,
        account=owner,
        primary_type=typed_data.primary_type,
    )


def select_witness(owner: str, spender: str, gasless: Optional[GaslessContext] = None) -> BoundWitness:
    """
    Bind the witness for a transaction.

    Plain transactions bind ``(owner, recipient=spender)``; gasless swaps and
    bridges bind their transaction hashes with ``user=owner``.  A bridge
    without a source swap falls back to the transfer witness.
    """
    if isinstance(gasless, GaslessSwapContext):
        return SWAP_WITNESS.bind(
            txId=gasless.tx_id,
            user=owner,
            executorFeesHash=gasless.executor_fees_hash,
            swapDataHash=gasless.swap_data_hash,
        )
    if isinstance(gasless, GaslessBridgeContext) and gasless.swap_data_hash:
        return BRIDGE_WITNESS.bind(
            txId=gasless.tx_id,
            user=owner,
            executorFeesHash=gasless.executor_fees_hash,
            swapDataHash=gasless.swap_data_hash,
            adapterDataHash=gasless.adapter_data_hash,
        )
    return TRANSFER_WITNESS.bind(owner=owner, recipient=spender)


async def sign_native_permit(
    *,
    client: ReadOnlyChainClient,
    signer: SignerHandle,
    chain_id: int,
    token: str,
    owner: str,
    spender: str,
    amount: int,
    deadline: int,
    version: Optional[str] = None,
) -> SignedPermit:
    """
    Sign an EIP-2612 permit for ``amount`` of ``token``.

    Reads the token name and the owner's current nonce first.

    Raises:
        CapabilityNotSupportedError: Name or nonce could not be read.
        UserRejectedError / SigningError: From the signer adapter.
    """
    name, nonce = await fetch_native_permit_metadata(client, token, owner)
    values = NativePermitValues(
        token_name=name,
        token=token,
        chain_id=chain_id,
        owner=owner,
        spender=spender,
        value=amount,
        nonce=nonce,
        deadline=deadline,
        version=version,
    )
    typed_data = build_typed_data(PermitScheme.NATIVE_PERMIT, values)
    signature = await _sign(signer, typed_data, owner)
    v, r, s = split_signature(signature)
    permit_data = pack(PermitScheme.NATIVE_PERMIT, NativePermitPayload(
        owner=owner, spender=spender, value=amount, deadline=deadline, v=v, r=r, s=s,
    ))
    return SignedPermit(PermitScheme.NATIVE_PERMIT, permit_data, nonce, deadline, typed_data)


async def sign_permit_single(
    *,
    resolver: NonceResolver,
    signer: SignerHandle,
    chain_id: int,
    token: str,
    owner: str,
    spender: str,
    amount: int,
    expiration: int,
    deadline: int,
) -> SignedPermit:
    """
    Sign a Permit2 ``PermitSingle`` allowance approval.

    The nonce is the ordered allowance nonce of ``(owner, token, spender)``.

    Raises:
        PackingInvariantError: ``amount`` does not fit uint160.
        NonceResolutionError: The allowance could not be read.
    """
    if amount > MAX_UINT160:
        raise PackingInvariantError(f"PermitSingle amount {amount} exceeds uint160")
    nonce = await resolver.allowance_nonce(owner, token, spender)
    values = PermitSingleValues(
        chain_id=chain_id,
        permit2_address=resolver.permit2_address,
        token=token,
        amount=amount,
        expiration=expiration,
        nonce=nonce,
        spender=spender,
        sig_deadline=deadline,
    )
    typed_data = build_typed_data(PermitScheme.PERMIT2_SINGLE, values)
    signature = await _sign(signer, typed_data, owner)
    permit_data = pack(PermitScheme.PERMIT2_SINGLE, Permit2SinglePayload(
        amount=amount, nonce=nonce, expiration=expiration, sig_deadline=deadline, signature=signature,
    ))
    return SignedPermit(PermitScheme.PERMIT2_SINGLE, permit_data, nonce, deadline, typed_data)


async def sign_witness_transfer(
    *,
    signer: SignerHandle,
    chain_id: int,
    permit2_address: str,
    token: str,
    owner: str,
    spender: str,
    amount: int,
    nonce: int,
    deadline: int,
    witness: BoundWitness,
) -> SignedPermit:
    """Sign a Permit2 ``PermitWitnessTransferFrom`` with an already resolved nonce."""
    values = PermitTransferValues(
        chain_id=chain_id,
        permit2_address=permit2_address,
        token=token,
        amount=amount,
        spender=spender,
        nonce=nonce,
        deadline=deadline,
    )
    typed_data = build_typed_data(PermitScheme.PERMIT2_WITNESS_TRANSFER, values, witness)
    signature = await _sign(signer, typed_data, owner)
    permit_data = pack(PermitScheme.PERMIT2_WITNESS_TRANSFER, Permit2WitnessTransferPayload(
        nonce=nonce, sig_deadline=deadline, signature=signature,
    ))
    return SignedPermit(PermitScheme.PERMIT2_WITNESS_TRANSFER, permit_data, nonce, deadline, typed_data)


async def sign_batch_witness_transfer(
    *,
    signer: SignerHandle,
    chain_id: int,
    permit2_address: str,
    permitted: List[Tuple[str, int]],
    owner: str,
    spender: str,
    nonce: int,
    deadline: int,
    witness: BoundWitness,
) -> SignedPermit:
    """Sign one Permit2 ``PermitBatchWitnessTransferFrom`` covering every ``(token, amount)`` pair."""
    if not permitted:
        raise PackingInvariantError("Batch witness transfer needs at least one token")
    values = PermitBatchTransferValues(
        chain_id=chain_id,
        permit2_address=permit2_address,
        permitted=list(permitted),
        spender=spender,
        nonce=nonce,
        deadline=deadline,
    )
    typed_data = build_typed_data(PermitScheme.PERMIT2_BATCH_WITNESS_TRANSFER, values, witness)
    signature = await _sign(signer, typed_data, owner)
    permit_data = pack(PermitScheme.PERMIT2_BATCH_WITNESS_TRANSFER, Permit2BatchWitnessTransferPayload(
        permitted=list(permitted), nonce=nonce, deadline=deadline, signature=signature,
    ))
    return SignedPermit(PermitScheme.PERMIT2_BATCH_WITNESS_TRANSFER, permit_data, nonce, deadline, typed_data)
