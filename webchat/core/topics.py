"""Topic names shared with the chat server. They must match exactly."""

CLIENT = "webchat.client"
SERVER = "webchat.server"
ROOMS = "webchat.rooms"
PRESENCE = "webchat.presence"
DATA_STORE = "webchat.data-store"

PARTAKERS_PREFIX = "webchat.partakers."

# Query types understood by the server side consumers
FIND_USER_BY_UUID = "find-user-by-uuid"
UPDATE_PRESENCE = "update-presence"


def partakers(room_id: str) -> str:
    """Room-scoped presence roster topic."""
    return f"{PARTAKERS_PREFIX}{room_id}"


def room_from_partakers(topic: str) -> str | None:
    """Extracts the room ID from a partakers topic, None for any other topic."""
    if not topic.startswith(PARTAKERS_PREFIX):
        return None
    return topic[len(PARTAKERS_PREFIX) :] or None
