"""
Governance Registry

Single owner, a set of authorized entities, and a key/value parameter map
that only authorized entities may write. Every accepted mutation emits one
event; every rejected call leaves state and the event log untouched.

Usage:
    from govreg.registry import GovernanceRegistry
    from govreg.keys import key_id

    registry = GovernanceRegistry(deployer)
    registry.set_entity_authorization(deployer, writer, True)
    registry.set_parameter(writer, key_id("quorum"), "4")
    registry.get_parameter(key_id("quorum"))   # "4"

Callers are opaque principal ids that the hosting environment has already
authenticated (see ``govreg.auth`` for the service's way of doing that).
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List

from .errors import InvalidArgument, NotAuthorized, NotOwner
from .events import EntityAuthorized, Event, OwnershipTransferred, ParameterSet
from .keys import KeyLike, normalize_key, validate_principal

logger = logging.getLogger(__name__)

Listener = Callable[[Event], None]


class GovernanceRegistry:
    """Registry state machine.

    All state sits behind one re-entrant lock. Mutations hold it across the
    check, the mutation and the event append; reads hold it too, so a read
    never sees a half-applied transition.
    """

    def __init__(self, deployer: str):
        validate_principal(deployer, "deployer")
        self._lock = threading.RLock()
        self._owner = deployer
        self._authorized: Dict[str, bool] = {deployer: True}
        self._parameters: Dict[str, str] = {}
        self._events: List[Event] = []
        self._listeners: List[Listener] = []
        self._writers: List[Listener] = []

    # =========================================================================
    # READS
    # =========================================================================

    def owner(self) -> str:
        with self._lock:
            return self._owner

    def is_authorized(self, principal: str) -> bool:
        with self._lock:
            return self._authorized.get(principal, False)

    def get_parameter(self, key: KeyLike) -> str:
        """Stored value for ``key``, or ``""`` if it was never written."""
        key = normalize_key(key)
        with self._lock:
            return self._parameters.get(key, "")

    def authorized_entities(self) -> Dict[str, bool]:
        with self._lock:
            return dict(self._authorized)

    def parameters(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._parameters)

    def events(self, since: int = 0) -> List[Event]:
        """Events with ``seq > since``, oldest first."""
        with self._lock:
            return list(self._events[max(since, 0):])

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "owner": self._owner,
                "authorized_entities": dict(self._authorized),
                "parameters": dict(self._parameters),
                "event_count": len(self._events),
            }

    # =========================================================================
    # OWNER-ONLY
    # =========================================================================

    def transfer_ownership(self, caller: str, new_owner: str) -> OwnershipTransferred:
        """Hand ownership to ``new_owner``.

        Raises:
            NotOwner: caller is not the current owner
            InvalidArgument: ``new_owner`` is empty or a zero identifier
        """
        with self._lock:
            self._require_owner(caller, "transferOwnership")
            self._validate(new_owner, "new_owner", caller, "transferOwnership")
            previous = self._owner
            event = self._commit(OwnershipTransferred, previous_owner=previous, new_owner=new_owner)
        logger.info("ownership transferred %s -> %s", previous, new_owner)
        return event

    def set_entity_authorization(self, caller: str, entity: str, authorized: bool) -> EntityAuthorized:
        """Grant or revoke parameter-write rights. Re-setting the same value re-emits."""
        with self._lock:
            self._require_owner(caller, "setEntityAuthorization")
            self._validate(entity, "entity", caller, "setEntityAuthorization")
            if not isinstance(authorized, bool):
                raise InvalidArgument("authorized", f"expected bool, got {type(authorized).__name__}")
            event = self._commit(EntityAuthorized, entity=entity, authorized=authorized)
        logger.info("entity %s authorization set to %s", entity, authorized)
        return event

    # =========================================================================
    # AUTHORIZED-ENTITY
    # =========================================================================

    def set_parameter(self, caller: str, key: KeyLike, value: str) -> ParameterSet:
        """Overwrite ``key`` with ``value``."""
        with self._lock:
            if not self._authorized.get(caller, False):
                logger.warning("setParameter rejected: %s is not authorized", caller)
                raise NotAuthorized(caller)
            key = normalize_key(key)
            if not isinstance(value, str):
                raise InvalidArgument("value", f"expected str, got {type(value).__name__}")
            event = self._commit(ParameterSet, key=key, value=value)
        logger.info("parameter %s set by %s", key, caller)
        return event

    # =========================================================================
    # OBSERVERS
    # =========================================================================

    def subscribe(self, listener: Listener) -> None:
        """Call ``listener(event)`` after each committed transition."""
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def add_writer(self, writer: Listener) -> None:
        """Make ``writer(event)`` part of every transition.

        Writers run under the lock before the transition is applied. If one
        raises, the exception propagates to the caller and nothing changes.
        Listener failures, by contrast, are logged and ignored.
        """
        with self._lock:
            self._writers.append(writer)

    def remove_writer(self, writer: Listener) -> None:
        with self._lock:
            if writer in self._writers:
                self._writers.remove(writer)

    # =========================================================================
    # REPLAY
    # =========================================================================

    @classmethod
    def replay(cls, deployer: str, events: Iterable[Event]) -> "GovernanceRegistry":
        """Rebuild a registry from its event log.

        Events are facts that were already checked when they were emitted, so
        caller privileges are not re-evaluated here; sequence numbers must run
        1, 2, 3, ... without gaps.
        """
        registry = cls(deployer)
        for expected, event in enumerate(events, start=1):
            if event.seq != expected:
                raise InvalidArgument("events", f"expected seq {expected}, got {event.seq}")
            registry._apply(event)
            registry._events.append(event)
        return registry

    def _apply(self, event: Event) -> None:
        if isinstance(event, OwnershipTransferred):
            self._owner = validate_principal(event.new_owner, "new_owner")
        elif isinstance(event, EntityAuthorized):
            self._authorized[validate_principal(event.entity, "entity")] = bool(event.authorized)
        elif isinstance(event, ParameterSet):
            self._parameters[normalize_key(event.key)] = event.value
        else:
            raise InvalidArgument("events", f"unknown event type {type(event).__name__}")

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _require_owner(self, caller: str, operation: str) -> None:
        if caller != self._owner:
            logger.warning("%s rejected: %s is not the owner", operation, caller)
            raise NotOwner(caller, self._owner)

    def _validate(self, principal: str, argument: str, caller: str, operation: str) -> None:
        try:
            validate_principal(principal, argument)
        except InvalidArgument as exc:
            logger.warning("%s rejected for %s: %s", operation, caller, exc.message)
            raise

    def _commit(self, event_cls, **payload) -> Event:
        # Caller holds the lock. Writers run before anything is applied, so a
        # writer failure leaves state and the event log as they were.
        event = event_cls(seq=len(self._events) + 1, **payload)
        for writer in list(self._writers):
            try:
                writer(event)
            except Exception:
                logger.error("writer %r failed on %s #%d; transition aborted", writer, event.name, event.seq)
                raise
        self._apply(event)
        self._events.append(event)
        self._notify(event)
        return event

    def _notify(self, event: Event) -> None:
        # Runs under the lock so listeners see events in seq order.
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("listener %r failed on %s #%d", listener, event.name, event.seq)
