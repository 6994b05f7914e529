"""
EIP-712 Typed-Data Builders

Dataclass containers for the typed data signed by the permit engine and the
pure ``build_typed_data`` entry point that turns per-scheme values into a
``TypedData`` envelope.  Nothing here performs I/O.

Exported helpers:
    - EIP712Domain / TypedData: Domain and ``eth_signTypedData_v4`` envelope.
    - NativePermitValues, PermitSingleValues, PermitTransferValues,
      PermitBatchTransferValues: Per-scheme message values.
    - WitnessDefinition / BoundWitness: Witness type declared once and bound
      to values; the same definition feeds both ``types`` and ``message``.
    - TRANSFER_WITNESS, SWAP_WITNESS, BRIDGE_WITNESS: Witness layouts known
      to the executor contracts.
    - build_typed_data: Scheme dispatch.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from eth_utils import to_bytes

from .constants import DEFAULT_PERMIT_VERSION, generate_deadline
from .schemas import PermitScheme


# -----------------------------
# EIP-712 Domain
# -----------------------------

_DOMAIN_FIELD_TYPES: List[Tuple[str, str]] = [
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
    ("salt", "bytes32"),
]

PERMIT2_DOMAIN_NAME = "Permit2"


@dataclass
class EIP712Domain:
    """
    EIP-712 domain separator.

    ``version`` and ``salt`` are optional: Permit2 has no version, only the
    gasless verifier uses a salt.  Absent fields are left out of both the
    domain and its type, which changes the separator hash.
    """
    name: str
    chainId: int
    verifyingContract: str
    version: Optional[str] = None
    salt: Optional[bytes] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "version": self.version,
            "chainId": self.chainId,
            "verifyingContract": self.verifyingContract,
            "salt": self.salt,
        }
        return {key: value for key, value in data.items() if value is not None}

    def type_fields(self) -> List[Dict[str, str]]:
        return eip712_domain_fields(self.to_dict())


def eip712_domain_fields(domain: Dict[str, Any]) -> List[Dict[str, str]]:
    """``EIP712Domain`` type entries for the keys present in ``domain``, in canonical order."""
    return [{"name": name, "type": type_} for name, type_ in _DOMAIN_FIELD_TYPES if name in domain]


@dataclass
class TypedData:
    """
    Complete EIP-712 payload.

    Attributes:
        domain: Domain separator values.
        types: Struct definitions, without ``EIP712Domain``.
        primary_type: Name of the struct being signed.
        message: Values of the primary struct.
    """
    domain: EIP712Domain
    types: Dict[str, List[Dict[str, str]]]
    primary_type: str
    message: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        """Return the ``{ types, primaryType, domain, message }`` envelope used by ``eth_signTypedData_v4``."""
        return {
            "types": {"EIP712Domain": self.domain.type_fields(), **self.types},
            "primaryType": self.primary_type,
            "domain": self.domain.to_dict(),
            "message": self.message,
        }


# -----------------------------
# Witness definitions
# -----------------------------

@dataclass(frozen=True)
class BoundWitness:
    type_name: str
    types: Dict[str, List[Dict[str, str]]]
    values: Dict[str, Any]


@dataclass(frozen=True)
class WitnessDefinition:
    """
    A Permit2 witness struct declared once.

    The executor contract hashes the witness with a typehash built from the
    same name and fields, so the declaration must match it exactly.

    Attributes:
        type_name: Struct name referenced by the ``witness`` field.
        fields: ``(name, solidity_type)`` pairs in declaration order.
    """
    type_name: str
    fields: Tuple[Tuple[str, str], ...]

    def types(self) -> Dict[str, List[Dict[str, str]]]:
        return {self.type_name: [{"name": name, "type": type_} for name, type_ in self.fields]}

    def bind(self, **values: Any) -> BoundWitness:
        """
        Attach values to the definition.

        ``bytes32`` values given as hex strings are converted to bytes.

        Raises:
            ValueError: The value keys differ from the declared field names.
        """
        declared = [name for name, _ in self.fields]
        if set(values) != set(declared):
            raise ValueError(
                f"{self.type_name} expects fields {declared}, got {sorted(values)}"
            )
        bound = {}
        for name, type_ in self.fields:
            value = values[name]
            if type_ == "bytes32" and isinstance(value, str):
                value = to_bytes(hexstr=value)
            bound[name] = value
        return BoundWitness(type_name=self.type_name, types=self.types(), values=bound)


TRANSFER_WITNESS = WitnessDefinition(
    "DZapTransferWitness",
    (("owner", "address"), ("recipient", "address")),
)

SWAP_WITNESS = WitnessDefinition(
    "DZapSwapWitness",
    (
        ("txId", "bytes32"),
        ("user", "address"),
        ("executorFeesHash", "bytes32"),
        ("swapDataHash", "bytes32"),
    ),
)

BRIDGE_WITNESS = WitnessDefinition(
    "DZapBridgeWitness",
    (
        ("txId", "bytes32"),
        ("user", "address"),
        ("executorFeesHash", "bytes32"),
        ("swapDataHash", "bytes32"),
        ("adapterDataHash", "bytes32"),
    ),
)


# -----------------------------
# Per-scheme values
# -----------------------------

@dataclass
class NativePermitValues:
    """
    Values of an EIP-2612 ``Permit``.

    Attributes:
        token_name: ``name()`` of the token (domain name).
        token: Token contract (domain verifying contract).
        chain_id: EVM network ID.
        owner / spender / value / nonce: ``Permit`` message fields.
        deadline: Defaults to now + 1800 seconds.
        version: Domain version; ``None`` means "1".
    """
    token_name: str
    token: str
    chain_id: int
    owner: str
    spender: str
    value: int
    nonce: int
    deadline: int = field(default_factory=generate_deadline)
    version: Optional[str] = None


@dataclass
class PermitSingleValues:
    """Values of a Permit2 ``PermitSingle`` allowance approval."""
    chain_id: int
    permit2_address: str
    token: str
    amount: int
    expiration: int
    nonce: int
    spender: str
    sig_deadline: int = field(default_factory=generate_deadline)


@dataclass
class PermitTransferValues:
    """Values of a Permit2 ``PermitWitnessTransferFrom`` for one token."""
    chain_id: int
    permit2_address: str
    token: str
    amount: int
    spender: str
    nonce: int
    deadline: int = field(default_factory=generate_deadline)


@dataclass
class PermitBatchTransferValues:
    """Values of a Permit2 ``PermitBatchWitnessTransferFrom``; ``permitted`` holds ``(token, amount)`` pairs."""
    chain_id: int
    permit2_address: str
    permitted: List[Tuple[str, int]]
    spender: str
    nonce: int
    deadline: int = field(default_factory=generate_deadline)


PermitValues = Union[NativePermitValues, PermitSingleValues, PermitTransferValues, PermitBatchTransferValues]

_TOKEN_PERMISSIONS = [
    {"name": "token", "type": "address"},
    {"name": "amount", "type": "uint256"},
]


def _permit2_domain(chain_id: int, permit2_address: str) -> EIP712Domain:
    return EIP712Domain(name=PERMIT2_DOMAIN_NAME, chainId=chain_id, verifyingContract=permit2_address)


def _native_permit(values: NativePermitValues) -> TypedData:
    domain = EIP712Domain(
        name=values.token_name,
        version=values.version or DEFAULT_PERMIT_VERSION,
        chainId=values.chain_id,
        verifyingContract=values.token,
    )
    types = {
        "Permit": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "nonce", "type": "uint256"},
            {"name": "deadline", "type": "uint256"},
        ],
    }
    message = {
        "owner": values.owner,
        "spender": values.spender,
        "value": values.value,
        "nonce": values.nonce,
        "deadline": values.deadline,
    }
    return TypedData(domain=domain, types=types, primary_type="Permit", message=message)


def _permit_single(values: PermitSingleValues) -> TypedData:
    types = {
        "PermitSingle": [
            {"name": "details", "type": "PermitDetails"},
            {"name": "spender", "type": "address"},
            {"name": "sigDeadline", "type": "uint256"},
        ],
        "PermitDetails": [
            {"name": "token", "type": "address"},
            {"name": "amount", "type": "uint160"},
            {"name": "expiration", "type": "uint48"},
            {"name": "nonce", "type": "uint48"},
        ],
    }
    message = {
        "details": {
            "token": values.token,
            "amount": values.amount,
            "expiration": values.expiration,
            "nonce": values.nonce,
        },
        "spender": values.spender,
        "sigDeadline": values.sig_deadline,
    }
    return TypedData(
        domain=_permit2_domain(values.chain_id, values.permit2_address),
        types=types,
        primary_type=PermitScheme.PERMIT2_SINGLE.value,
        message=message,
    )


def _witness_transfer(values: PermitTransferValues, witness: BoundWitness) -> TypedData:
    types = {
        **witness.types,
        "TokenPermissions": list(_TOKEN_PERMISSIONS),
        "PermitWitnessTransferFrom": [
            {"name": "permitted", "type": "TokenPermissions"},
            {"name": "spender", "type": "address"},
            {"name": "nonce", "type": "uint256"},
            {"name": "deadline", "type": "uint256"},
            {"name": "witness", "type": witness.type_name},
        ],
    }
    message = {
        "permitted": {"token": values.token, "amount": values.amount},
        "spender": values.spender,
        "nonce": values.nonce,
        "deadline": values.deadline,
        "witness": dict(witness.values),
    }
    return TypedData(
        domain=_permit2_domain(values.chain_id, values.permit2_address),
        types=types,
        primary_type=PermitScheme.PERMIT2_WITNESS_TRANSFER.value,
        message=message,
    )


def _batch_witness_transfer(values: PermitBatchTransferValues, witness: BoundWitness) -> TypedData:
    types = {
        **witness.types,
        "TokenPermissions": list(_TOKEN_PERMISSIONS),
        "PermitBatchWitnessTransferFrom": [
            {"name": "permitted", "type": "TokenPermissions[]"},
            {"name": "spender", "type": "address"},
            {"name": "nonce", "type": "uint256"},
            {"name": "deadline", "type": "uint256"},
            {"name": "witness", "type": witness.type_name},
        ],
    }
    message = {
        "permitted": [{"token": token, "amount": amount} for token, amount in values.permitted],
        "spender": values.spender,
        "nonce": values.nonce,
        "deadline": values.deadline,
        "witness": dict(witness.values),
    }
    return TypedData(
        domain=_permit2_domain(values.chain_id, values.permit2_address),
        types=types,
        primary_type=PermitScheme.PERMIT2_BATCH_WITNESS_TRANSFER.value,
        message=message,
    )


_VALUE_TYPES = {
    PermitScheme.NATIVE_PERMIT: NativePermitValues,
    PermitScheme.PERMIT2_SINGLE: PermitSingleValues,
    PermitScheme.PERMIT2_WITNESS_TRANSFER: PermitTransferValues,
    PermitScheme.PERMIT2_BATCH_WITNESS_TRANSFER: PermitBatchTransferValues,
}


def build_typed_data(
    scheme: PermitScheme,
    values: PermitValues,
    witness: Optional[BoundWitness] = None,
) -> TypedData:
    """
    Build the EIP-712 typed data for ``scheme``.

    Args:
        scheme: Scheme to sign. ``DefaultPermit`` has nothing to sign.
        values: Value dataclass matching ``scheme``.
        witness: Bound witness; required by the two witness-transfer schemes
                 and rejected by the others.

    Returns:
        TypedData ready for the signer adapter.

    Raises:
        ValueError: Unknown scheme, values of the wrong type, or a missing or
                    unexpected witness.
    """
    expected = _VALUE_TYPES.get(scheme)
    if expected is None:
        raise ValueError(f"No typed data for scheme {scheme}")
    if not isinstance(values, expected):
        raise ValueError(f"{scheme.value} expects {expected.__name__}, got {type(values).__name__}")

    needs_witness = scheme in (
        PermitScheme.PERMIT2_WITNESS_TRANSFER,
        PermitScheme.PERMIT2_BATCH_WITNESS_TRANSFER,
    )
    if needs_witness and witness is None:
        raise ValueError(f"{scheme.value} requires a witness")
    if not needs_witness and witness is not None:
        raise ValueError(f"{scheme.value} does not take a witness")

    if scheme == PermitScheme.NATIVE_PERMIT:
        return _native_permit(values)
    if scheme == PermitScheme.PERMIT2_SINGLE:
        return _permit_single(values)
    if scheme == PermitScheme.PERMIT2_WITNESS_TRANSFER:
        return _witness_transfer(values, witness)
    return _batch_witness_transfer(values, witness)
