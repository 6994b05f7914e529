from .evm import (
    PermitOrchestrator,
    PermitBatchRequest,
    PermitBatchResult,
    PermitMode,
    PermitScheme,
    TokenAmount,
    LocalAccountSigner,
    WalletClientSigner,
)

__all__ = [
    "PermitOrchestrator",
    "PermitBatchRequest",
    "PermitBatchResult",
    "PermitMode",
    "PermitScheme",
    "TokenAmount",
    "LocalAccountSigner",
    "WalletClientSigner",
]
