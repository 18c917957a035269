"""
Registry error taxonomy.

    RegistryError (base)
    ├── NotOwner          caller lacks owner privilege
    ├── NotAuthorized     caller lacks authorized-entity privilege
    ├── InvalidArgument   malformed principal, key or value
    └── DeploymentError   deployment record / journal problems
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RegistryError(Exception):
    """Base error for all registry failures."""

    code = "RegistryError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class NotOwner(RegistryError):
    code = "NotOwner"

    def __init__(self, caller: str, owner: str):
        super().__init__(
            "GovernanceRegistry: caller is not the owner",
            {"caller": caller},
        )
        self.caller = caller
        self.owner = owner


class NotAuthorized(RegistryError):
    code = "NotAuthorized"

    def __init__(self, caller: str):
        super().__init__(
            "GovernanceRegistry: caller is not authorized",
            {"caller": caller},
        )
        self.caller = caller


class InvalidArgument(RegistryError):
    """Raised for a malformed principal identifier, key identifier or value."""

    code = "InvalidArgument"

    def __init__(self, argument: str, message: str):
        super().__init__(f"GovernanceRegistry: invalid {argument}: {message}", {"argument": argument})
        self.argument = argument


class DeploymentError(RegistryError):
    code = "DeploymentError"
