"""Observer fan-out and inbound command routing."""

from trafficsim.gateway.broadcaster import Broadcaster, Subscriber
from trafficsim.gateway.gateway import BroadcastGateway

__all__ = ["Broadcaster", "BroadcastGateway", "Subscriber"]
