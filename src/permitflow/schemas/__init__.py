from .bases import CanonicalModel, TxnStatus, StatusCodes, PermitStage

__all__ = [
    "CanonicalModel",
    "TxnStatus",
    "StatusCodes",
    "PermitStage",
]
