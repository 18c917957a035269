"""
govreg - Governance Registry

An owner-controlled registry of authorized entities and bytes32-keyed
parameters, with an ordered event log:
- registry.py: the state machine (owner, authorized set, parameters, events)
- events.py / errors.py: event and error types
- keys.py: keccak key ids and principal validation
- witness.py: hash-chained SQLite journal of events
- auth.py: Ed25519 challenge-response for service callers
- deploy.py / accounts.py: deployment records and validator keypairs
- api_server.py / client.py / cli.py: HTTP service, httpx client, command line
"""

__version__ = "0.1.0"

# Lazy imports - only import what's needed when used
def __getattr__(name):
    if name == "GovernanceRegistry":
        from .registry import GovernanceRegistry
        return GovernanceRegistry
    elif name in ("Event", "OwnershipTransferred", "EntityAuthorized", "ParameterSet"):
        from . import events
        return getattr(events, name)
    elif name in ("RegistryError", "NotOwner", "NotAuthorized", "InvalidArgument", "DeploymentError"):
        from . import errors
        return getattr(errors, name)
    elif name == "key_id":
        from .keys import key_id
        return key_id
    elif name == "EventJournal":
        from .witness import EventJournal
        return EventJournal
    elif name == "RegistryClient":
        from .client import RegistryClient
        return RegistryClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
