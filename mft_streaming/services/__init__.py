"""Services for the streaming upload client."""
from .api_client import UploadClient
from .encoder import TransferEncoder, WireBody
from .token_provider import TokenProvider, TokenState, get_token

__all__ = [
    "UploadClient",
    "TransferEncoder",
    "WireBody",
    "TokenProvider",
    "TokenState",
    "get_token",
]
