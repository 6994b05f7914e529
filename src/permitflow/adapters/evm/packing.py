"""
Permit Data Packing

Permit data handed to the executor contract is ``abi.encode(uint8 tag, bytes
inner)``: the tag tells the contract which scheme to decode ``inner`` with.

Inner layouts by tag:
    0  native EIP-2612 permit
       ``(address owner, address spender, uint256 value, uint256 deadline,
       uint8 v, bytes32 r, bytes32 s)``
    1  Permit2 single approval
       ``(uint160 amount, uint48 nonce, uint48 expiration, uint256 sigDeadline,
       bytes signature)``
    2  Permit2 witness transfer
       ``(uint256 nonce, uint256 sigDeadline, bytes signature)``
    3  Permit2 batch witness transfer
       ``((address,uint256)[] permitted, uint256 nonce, uint256 deadline)``
       followed by ``bytes signature``

Empty inner bytes under tag 0 or 1 is the ``DefaultPermit`` sentinel: no
signature needed for that token.
"""

from dataclasses import dataclass
from typing import List, Tuple, Union

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from eth_utils import to_checksum_address

from ...engine.exceptions import PackingInvariantError
from .schemas import PermitScheme, SchemeTag


_OUTER_TYPES = ["uint8", "bytes"]
_NATIVE_TYPES = ["address", "address", "uint256", "uint256", "uint8", "bytes32", "bytes32"]
_SINGLE_TYPES = ["uint160", "uint48", "uint48", "uint256", "bytes"]
_TRANSFER_TYPES = ["uint256", "uint256", "bytes"]
_BATCH_TYPES = ["((address,uint256)[],uint256,uint256)", "bytes"]


def _checksum(name: str, address: str) -> str:
    try:
        return to_checksum_address(address)
    except (TypeError, ValueError) as e:
        raise PackingInvariantError(f"{name}={address!r} is not an address") from e


@dataclass(frozen=True)
class NativePermitPayload:
    """Owner and spender are stored checksummed."""
    owner: str
    spender: str
    value: int
    deadline: int
    v: int
    r: bytes
    s: bytes

    def __post_init__(self):
        object.__setattr__(self, "owner", _checksum("owner", self.owner))
        object.__setattr__(self, "spender", _checksum("spender", self.spender))


@dataclass(frozen=True)
class Permit2SinglePayload:
    amount: int
    nonce: int
    expiration: int
    sig_deadline: int
    signature: bytes


@dataclass(frozen=True)
class Permit2WitnessTransferPayload:
    nonce: int
    sig_deadline: int
    signature: bytes


@dataclass(frozen=True)
class Permit2BatchWitnessTransferPayload:
    """Permitted token addresses are stored checksummed."""
    permitted: List[Tuple[str, int]]
    nonce: int
    deadline: int
    signature: bytes

    def __post_init__(self):
        permitted = [(_checksum("token", token), amount) for token, amount in self.permitted]
        object.__setattr__(self, "permitted", permitted)


@dataclass(frozen=True)
class DefaultPermitPayload:
    """No-op payload; ``tag`` is the scheme family (0 native, 1 Permit2)."""
    tag: SchemeTag = SchemeTag.PERMIT2_SINGLE


PermitPayload = Union[
    NativePermitPayload,
    Permit2SinglePayload,
    Permit2WitnessTransferPayload,
    Permit2BatchWitnessTransferPayload,
    DefaultPermitPayload,
]

SCHEME_TAGS = {
    PermitScheme.NATIVE_PERMIT: SchemeTag.NATIVE_PERMIT,
    PermitScheme.PERMIT2_SINGLE: SchemeTag.PERMIT2_SINGLE,
    PermitScheme.PERMIT2_WITNESS_TRANSFER: SchemeTag.PERMIT2_WITNESS_TRANSFER,
    PermitScheme.PERMIT2_BATCH_WITNESS_TRANSFER: SchemeTag.PERMIT2_BATCH_WITNESS_TRANSFER,
}

_PAYLOAD_TYPES = {
    PermitScheme.NATIVE_PERMIT: NativePermitPayload,
    PermitScheme.PERMIT2_SINGLE: Permit2SinglePayload,
    PermitScheme.PERMIT2_WITNESS_TRANSFER: Permit2WitnessTransferPayload,
    PermitScheme.PERMIT2_BATCH_WITNESS_TRANSFER: Permit2BatchWitnessTransferPayload,
    PermitScheme.DEFAULT_PERMIT: DefaultPermitPayload,
}


def _check_uint(name: str, value: int, bits: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0 or value >= 1 << bits:
        raise PackingInvariantError(f"{name}={value!r} does not fit uint{bits}")


def _check_bytes32(name: str, value: bytes) -> None:
    if not isinstance(value, (bytes, bytearray)) or len(value) != 32:
        raise PackingInvariantError(f"{name} must be 32 bytes")


def split_signature(signature: bytes) -> Tuple[int, bytes, bytes]:
    """
    Split a 65-byte ``r || s || v`` signature into ``(v, r, s)``.

    ``v`` is normalised to 27/28.
    """
    if len(signature) != 65:
        raise PackingInvariantError(f"Signature must be 65 bytes, got {len(signature)}")
    r = bytes(signature[:32])
    s = bytes(signature[32:64])
    v = signature[64]
    if v < 27:
        v += 27
    return v, r, s


def _encode_inner(scheme: PermitScheme, payload: PermitPayload) -> bytes:
    if scheme == PermitScheme.NATIVE_PERMIT:
        _check_uint("value", payload.value, 256)
        _check_uint("deadline", payload.deadline, 256)
        _check_uint("v", payload.v, 8)
        _check_bytes32("r", payload.r)
        _check_bytes32("s", payload.s)
        return encode(_NATIVE_TYPES, [
            payload.owner, payload.spender, payload.value, payload.deadline,
            payload.v, bytes(payload.r), bytes(payload.s),
        ])
    if scheme == PermitScheme.PERMIT2_SINGLE:
        _check_uint("amount", payload.amount, 160)
        _check_uint("nonce", payload.nonce, 48)
        _check_uint("expiration", payload.expiration, 48)
        _check_uint("sig_deadline", payload.sig_deadline, 256)
        return encode(_SINGLE_TYPES, [
            payload.amount, payload.nonce, payload.expiration, payload.sig_deadline, bytes(payload.signature),
        ])
    if scheme == PermitScheme.PERMIT2_WITNESS_TRANSFER:
        _check_uint("nonce", payload.nonce, 256)
        _check_uint("sig_deadline", payload.sig_deadline, 256)
        return encode(_TRANSFER_TYPES, [payload.nonce, payload.sig_deadline, bytes(payload.signature)])

    for _, amount in payload.permitted:
        _check_uint("amount", amount, 256)
    _check_uint("nonce", payload.nonce, 256)
    _check_uint("deadline", payload.deadline, 256)
    permit = ([(token, amount) for token, amount in payload.permitted], payload.nonce, payload.deadline)
    return encode(_BATCH_TYPES, [permit, bytes(payload.signature)])


def pack(scheme: PermitScheme, payload: PermitPayload) -> bytes:
    """
    Encode ``payload`` as permit data for ``scheme``.

    Raises:
        PackingInvariantError: The payload type does not match the scheme, or
            a field does not fit its ABI type.
    """
    expected = _PAYLOAD_TYPES[scheme]
    if not isinstance(payload, expected):
        raise PackingInvariantError(
            f"{scheme.value} expects {expected.__name__}, got {type(payload).__name__}"
        )

    if scheme == PermitScheme.DEFAULT_PERMIT:
        if payload.tag not in (SchemeTag.NATIVE_PERMIT, SchemeTag.PERMIT2_SINGLE):
            raise PackingInvariantError(f"Default permit cannot use tag {int(payload.tag)}")
        return encode(_OUTER_TYPES, [int(payload.tag), b""])

    try:
        inner = _encode_inner(scheme, payload)
    except EncodingError as e:
        raise PackingInvariantError(f"Cannot encode {scheme.value} payload: {e}") from e
    return encode(_OUTER_TYPES, [int(SCHEME_TAGS[scheme]), inner])


def decode_permit_data(data: Union[bytes, str]) -> Tuple[PermitScheme, PermitPayload]:
    """
    Decode permit data produced by ``pack``.

    Returns:
        Tuple of the scheme and its payload.  Empty inner bytes decode to
        ``DefaultPermit``.

    Raises:
        PackingInvariantError: Unknown tag or malformed bytes.
    """
    if isinstance(data, str):
        try:
            data = bytes.fromhex(data[2:] if data.startswith("0x") else data)
        except ValueError as e:
            raise PackingInvariantError(f"Malformed permit data: {e}") from e
    try:
        tag, inner = decode(_OUTER_TYPES, data)
        try:
            tag = SchemeTag(tag)
        except ValueError as e:
            raise PackingInvariantError(f"Unknown permit tag {tag}") from e

        if not inner:
            if tag not in (SchemeTag.NATIVE_PERMIT, SchemeTag.PERMIT2_SINGLE):
                raise PackingInvariantError(f"Empty permit data under tag {int(tag)}")
            return PermitScheme.DEFAULT_PERMIT, DefaultPermitPayload(tag=tag)

        if tag == SchemeTag.NATIVE_PERMIT:
            owner, spender, value, deadline, v, r, s = decode(_NATIVE_TYPES, inner)
            return PermitScheme.NATIVE_PERMIT, NativePermitPayload(
                owner=owner,
                spender=spender,
                value=value,
                deadline=deadline,
                v=v,
                r=r,
                s=s,
            )
        if tag == SchemeTag.PERMIT2_SINGLE:
            amount, nonce, expiration, sig_deadline, signature = decode(_SINGLE_TYPES, inner)
            return PermitScheme.PERMIT2_SINGLE, Permit2SinglePayload(
                amount=amount, nonce=nonce, expiration=expiration, sig_deadline=sig_deadline, signature=signature,
            )
        if tag == SchemeTag.PERMIT2_WITNESS_TRANSFER:
            nonce, sig_deadline, signature = decode(_TRANSFER_TYPES, inner)
            return PermitScheme.PERMIT2_WITNESS_TRANSFER, Permit2WitnessTransferPayload(
                nonce=nonce, sig_deadline=sig_deadline, signature=signature,
            )

        (permitted, nonce, deadline), signature = decode(_BATCH_TYPES, inner)
        return PermitScheme.PERMIT2_BATCH_WITNESS_TRANSFER, Permit2BatchWitnessTransferPayload(
            permitted=list(permitted),
            nonce=nonce,
            deadline=deadline,
            signature=signature,
        )
    except DecodingError as e:
        raise PackingInvariantError(f"Malformed permit data: {e}") from e


def to_hex(data: bytes) -> str:
    return "0x" + data.hex()


DEFAULT_PERMIT_DATA: bytes = pack(PermitScheme.DEFAULT_PERMIT, DefaultPermitPayload(tag=SchemeTag.NATIVE_PERMIT))
DEFAULT_PERMIT2_DATA: bytes = pack(PermitScheme.DEFAULT_PERMIT, DefaultPermitPayload(tag=SchemeTag.PERMIT2_SINGLE))
