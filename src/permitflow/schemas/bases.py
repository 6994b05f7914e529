"""
Base Schema Models for permitflow

This module defines the fundamental base classes and shared enumerations that
all other schema models build on. It provides the foundation for validation
and consistent serialization across the permit negotiation engine.

Core Classes:
    - CanonicalModel: Pydantic base model with deterministic JSON output
    - TxnStatus: Outcome of a signing step (success / rejected / error)
    - StatusCodes: Numeric codes reported alongside ``TxnStatus``
    - PermitStage: Step of the authorization flow that produced a failure

Dependencies:
    - pydantic: For data validation and serialization
"""

import json
from typing import Dict, Any
from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict


class CanonicalModel(BaseModel):
    """
    Pydantic base model with canonical JSON serialization.

    Ensures a deterministic representation (sorted keys, no extra
    whitespace) so that results can be compared, hashed or cached by the
    calling application without surprises.

    Example:
        class MyModel(CanonicalModel):
            name: str
            value: int

        model = MyModel(name="test", value=123)
        model.to_canonical_json()  # '{"name":"test","value":123}'
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_canonical_json(self) -> str:
        """
        Convert model to a canonical JSON string.

        ``model_dump(mode="json")`` converts enums and nested models to plain
        Python types; ``json.dumps`` with sorted keys and compact separators
        gives a stable byte representation.

        Returns:
            str: JSON string with sorted keys and no extra whitespace.
        """
        data = self.model_dump(mode="json")
        return json.dumps(
            data,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model to dictionary representation.

        Returns:
            Dict[str, Any]: Dictionary with all model fields.
        """
        return self.model_dump()


class TxnStatus(str, Enum):
    """
    Outcome of an authorization step.

    Attributes:
        SUCCESS: Step completed and produced permit data
        REJECTED: The wallet/user explicitly declined the signature request
        ERROR: Any other failure (RPC, unsupported token, signing error)
    """
    SUCCESS = "success"
    REJECTED = "rejected"
    ERROR = "error"


class StatusCodes(IntEnum):
    """
    Numeric codes reported with every result.

    ``USER_REJECTED_REQUEST`` is the EIP-1193 provider code for a request the
    user declined; wallets surface it on the error (or its cause).
    """
    SUCCESS = 200
    USER_REJECTED_REQUEST = 4001
    ERROR = 500


class PermitStage(str, Enum):
    """Step of the per-token authorization flow."""
    CAPABILITY_PROBE = "capability_probe"
    NONCE_RESOLUTION = "nonce_resolution"
    SIGNING = "signing"
    PACKING = "packing"
