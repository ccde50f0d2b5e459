from enum import Enum
from typing import NamedTuple, Optional


class MessageKind(str, Enum):
    DATA = "data"
    NOTIFY = "notify"


class Route(NamedTuple):
    device_id: Optional[str]
    kind: Optional[MessageKind]


def route(topic: str) -> Route:
    """Split ``<prefix>/<device_id>/<kind>`` into its device and kind."""
    parts = topic.split("/")
    device_id = parts[1] if len(parts) > 1 else None
    raw_kind = parts[2] if len(parts) > 2 else None

    try:
        kind = MessageKind(raw_kind) if raw_kind is not None else None
    except ValueError:
        kind = None

    return Route(device_id, kind)


def subscription_filters(prefix: str) -> list[str]:
    return [f"{prefix}/+/{kind.value}" for kind in MessageKind]
