class PearlAgentError(Exception):
    """Base class for errors raised by a pearl retrieval agent."""


class ConnectionLostError(PearlAgentError):
    """The connection to the server is gone; fatal to the agent that owned it."""

    def __init__(self, identity: str, reason: str = "unknown"):
        super().__init__(f"{identity} lost its connection: {reason}")
        self.identity = identity
        self.reason = reason


class NavigationBusyError(PearlAgentError):
    """A navigation was requested while another one is still outstanding."""
