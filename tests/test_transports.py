import pytest

from realtime_core.events import ConversationEvent, EventKind
from realtime_core.transports import EventTransport, RawTransport, to_snake


def test_name_conversion():
    assert to_snake("joinConversation") == "join_conversation"
    assert to_snake("ping") == "ping"


def test_event_framing():
    transport = EventTransport(websocket=None)
    event = ConversationEvent(kind=EventKind.JOINED_CONVERSATION, conversation_id=7, payload={"memberCount": 2})
    frame = transport.encode(event)
    assert frame["event"] == "joinedConversation"
    assert frame["data"]["memberCount"] == 2
    assert frame["data"]["timestamp"] == event.timestamp


def test_raw_framing():
    transport = RawTransport(websocket=None)
    frame = transport.encode(ConversationEvent(kind=EventKind.NEW_MESSAGE, payload={"content": "hi"}))
    assert frame["type"] == "new_message"
    assert frame["data"]["content"] == "hi"


@pytest.mark.parametrize(
    "frame,expected",
    [
        ({"event": "sendMessage", "data": {"content": "x"}}, ("send_message", {"content": "x"})),
        ({"event": "leaveConversation"}, ("leave_conversation", None)),
        ({"event": "explode"}, (None, None)),
        ({"type": "ping"}, (None, None)),
        ([1, 2], (None, None)),
    ],
)
def test_event_decoding(frame, expected):
    assert EventTransport(websocket=None).decode(frame) == expected


@pytest.mark.parametrize(
    "frame,expected",
    [
        ({"type": "start_typing", "data": 7}, ("start_typing", 7)),
        ({"type": "startTyping", "data": 7}, (None, None)),
        ({"event": "ping"}, (None, None)),
    ],
)
def test_raw_decoding(frame, expected):
    assert RawTransport(websocket=None).decode(frame) == expected
