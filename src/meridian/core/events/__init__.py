"""Message channel.

The channel is the only path a schedule dispatch takes toward a task's
owner: in-process listeners on a plain node, the RPC server on a serving
node.
"""

from meridian.core.events.channel import Listener, MessageChannel

__all__ = ["Listener", "MessageChannel"]
