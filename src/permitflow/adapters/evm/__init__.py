from .orchestrator import PermitOrchestrator
from .schemas import (
    PermitMode,
    PermitScheme,
    SchemeTag,
    TokenAmount,
    TokenAuthorizationRequest,
    CapabilityResult,
    GaslessSwapContext,
    GaslessBridgeContext,
    PermitBatchRequest,
    TokenPermitResult,
    PermitBatchResult,
    GaslessIntentSignature,
)
from .constants import PermitConfig, load_config_from_env, get_permit2_address
from .chain import ReadOnlyChainClient, Web3ChainClient, ChainClientPool
from .capabilities import probe_native_permit_support
from .nonces import BitmapNonceScanner, ProxyNonceReader, NonceResolver
from .standards import build_typed_data, WitnessDefinition
from .signers import LocalAccountSigner, WalletClientSigner, Web3WalletClient, sign_typed_data
from .packing import pack, decode_permit_data, split_signature

__all__ = [
    "PermitOrchestrator",
    "PermitMode",
    "PermitScheme",
    "SchemeTag",
    "TokenAmount",
    "TokenAuthorizationRequest",
    "CapabilityResult",
    "GaslessSwapContext",
    "GaslessBridgeContext",
    "PermitBatchRequest",
    "TokenPermitResult",
    "PermitBatchResult",
    "GaslessIntentSignature",
    "PermitConfig",
    "load_config_from_env",
    "get_permit2_address",
    "ReadOnlyChainClient",
    "Web3ChainClient",
    "ChainClientPool",
    "probe_native_permit_support",
    "BitmapNonceScanner",
    "ProxyNonceReader",
    "NonceResolver",
    "build_typed_data",
    "WitnessDefinition",
    "LocalAccountSigner",
    "WalletClientSigner",
    "Web3WalletClient",
    "sign_typed_data",
    "pack",
    "decode_permit_data",
    "split_signature",
]
