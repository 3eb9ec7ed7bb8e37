from .classifier import PageType, classify
from .client import AzureAdClient
from .mfa import MfaDriver, select_user_proof
from .transport import ResponseSnapshot, TransportSession

__all__ = [
    "AzureAdClient",
    "MfaDriver",
    "PageType",
    "ResponseSnapshot",
    "TransportSession",
    "classify",
    "select_user_proof",
]
