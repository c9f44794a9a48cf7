"""Transport adapters: HTTP, WebSocket and publish/subscribe broker."""

from uavlink.transports.broker import BrokerTransport, decode_topic_message
from uavlink.transports.http import HttpApi
from uavlink.transports.socket import SOCKET_PATH, SocketConnection, SocketTransport

__all__ = [
    "BrokerTransport",
    "HttpApi",
    "SOCKET_PATH",
    "SocketConnection",
    "SocketTransport",
    "decode_topic_message",
]
