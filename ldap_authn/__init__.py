"""Kubernetes webhook token authentication against an LDAP directory."""

from .config import AuthnConfig, load_config
from .credentials import Credential, extract
from .directory import DirectoryValidator
from .review import AuthenticationResult, DirectoryIdentity, respond

__version__ = "0.1.0"

__all__ = [
    "AuthenticationResult",
    "AuthnConfig",
    "Credential",
    "DirectoryIdentity",
    "DirectoryValidator",
    "extract",
    "load_config",
    "respond",
]
