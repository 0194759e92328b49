"""Credential store gateways."""

from credsync.gateway.base import CredentialGateway, redact
from credsync.gateway.http import HttpCredentialGateway
from credsync.gateway.memory import GatewayCall, InMemoryGateway

__all__ = [
    "CredentialGateway",
    "GatewayCall",
    "HttpCredentialGateway",
    "InMemoryGateway",
    "redact",
]
