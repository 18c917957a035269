"""
Registry events.

Every accepted mutating call produces exactly one immutable event. Events are
numbered by ``seq`` (1-based position in the registry's log) and carry the
post-transition values, so the log alone is enough to rebuild the state.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Tuple, Type


@dataclass(frozen=True)
class Event:
    seq: int

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def args(self) -> Tuple[Any, ...]:
        """Payload values in declaration order, without ``seq``."""
        return tuple(getattr(self, f.name) for f in fields(self) if f.name != "seq")

    def payload(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("seq")
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {"seq": self.seq, "name": self.name, "args": self.payload()}


@dataclass(frozen=True)
class OwnershipTransferred(Event):
    previous_owner: str
    new_owner: str


@dataclass(frozen=True)
class EntityAuthorized(Event):
    entity: str
    authorized: bool


@dataclass(frozen=True)
class ParameterSet(Event):
    key: str
    value: str


EVENT_TYPES: Dict[str, Type[Event]] = {
    cls.__name__: cls for cls in (OwnershipTransferred, EntityAuthorized, ParameterSet)
}


def event_from_dict(data: Dict[str, Any]) -> Event:
    """Inverse of ``Event.to_dict``."""
    try:
        cls = EVENT_TYPES[data["name"]]
    except KeyError:
        raise ValueError(f"Unknown event: {data.get('name')!r}")
    return cls(seq=int(data["seq"]), **data.get("args", {}))
