"""Outbound API module - credentials, resilient executor, and platform clients."""

from .credentials import AccessToken, CredentialManager
from .executor import ApiRequest, RequestExecutor
from .rithum_client import RithumClient
from .shipstation_client import ShipStationClient

__all__ = [
    "AccessToken",
    "ApiRequest",
    "CredentialManager",
    "RequestExecutor",
    "RithumClient",
    "ShipStationClient",
]
