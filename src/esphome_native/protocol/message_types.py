"""Native API message type tags.

Tag Overview:
- 1-8: Connection housekeeping (hello, connect/login, disconnect, ping)
- 9-10: Device info
- 11-19, 41-52: Entity listing
- 20-27, 47-53: State subscription and state pushes
- 36-37: Time sync (device asks the client for wall-clock time)
"""

from enum import IntEnum


class MessageType(IntEnum):
    HELLO_REQUEST = 1
    HELLO_RESPONSE = 2
    CONNECT_REQUEST = 3  # Login with password
    CONNECT_RESPONSE = 4
    DISCONNECT_REQUEST = 5
    DISCONNECT_RESPONSE = 6
    PING_REQUEST = 7
    PING_RESPONSE = 8
    DEVICE_INFO_REQUEST = 9
    DEVICE_INFO_RESPONSE = 10

    LIST_ENTITIES_REQUEST = 11
    LIST_ENTITIES_BINARY_SENSOR_RESPONSE = 12
    LIST_ENTITIES_COVER_RESPONSE = 13
    LIST_ENTITIES_FAN_RESPONSE = 14
    LIST_ENTITIES_LIGHT_RESPONSE = 15
    LIST_ENTITIES_SENSOR_RESPONSE = 16
    LIST_ENTITIES_SWITCH_RESPONSE = 17
    LIST_ENTITIES_TEXT_SENSOR_RESPONSE = 18
    LIST_ENTITIES_DONE_RESPONSE = 19

    SUBSCRIBE_STATES_REQUEST = 20
    BINARY_SENSOR_STATE_RESPONSE = 21
    COVER_STATE_RESPONSE = 22
    FAN_STATE_RESPONSE = 23
    LIGHT_STATE_RESPONSE = 24
    SENSOR_STATE_RESPONSE = 25
    SWITCH_STATE_RESPONSE = 26
    TEXT_SENSOR_STATE_RESPONSE = 27

    GET_TIME_REQUEST = 36
    GET_TIME_RESPONSE = 37

    LIST_ENTITIES_SERVICES_RESPONSE = 41
    LIST_ENTITIES_CAMERA_RESPONSE = 43
    LIST_ENTITIES_CLIMATE_RESPONSE = 46
    CLIMATE_STATE_RESPONSE = 47
    LIST_ENTITIES_NUMBER_RESPONSE = 49
    NUMBER_STATE_RESPONSE = 50
    LIST_ENTITIES_SELECT_RESPONSE = 52
    SELECT_STATE_RESPONSE = 53


# Frames the session read loop answers itself; never delivered to callers
HOUSEKEEPING_TYPES = frozenset(
    {
        MessageType.PING_REQUEST,
        MessageType.GET_TIME_REQUEST,
        MessageType.DISCONNECT_REQUEST,
    },
)


def describe_type(type_tag: int) -> str:
    """Return the enum name for a tag, or ``type_<n>`` for unknown tags."""
    try:
        return MessageType(type_tag).name
    except ValueError:
        return f"type_{type_tag}"
