"""Error taxonomy for the channel synchronizer."""


class WebChatError(Exception):
    """Base class for every error raised by this package."""


class TransportError(WebChatError):
    """Delivery or registration failure on the pub/sub fabric."""


class LookupFailure(WebChatError):
    """A user directory resolution failed."""

    def __init__(self, user_id: str, reason: str = ""):
        self.user_id = user_id
        message = f"Lookup for user {user_id} failed"
        super().__init__(f"{message}: {reason}" if reason else message)


class HistoryLoadFailure(WebChatError):
    """The room history could not be retrieved or parsed."""


class RoomCreationFailure(WebChatError):
    """The chat server refused or failed a room creation request."""


class ChannelStateError(WebChatError):
    """Invalid state transition (double init, use after teardown)."""
