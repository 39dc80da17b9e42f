"""Two-peer WebRTC sessions signaled through a shared GitHub gist."""

from .errors import (
	ChannelNotOpenError,
	ConnectionStateError,
	GatherTimeoutError,
	GistLinkError,
	InitializationError,
	RoomSourceMissingError,
	StoreError,
	StoreRequestError,
	StoreUnavailableError,
)
from .rtc.connection import Connection, ConnectionCallbacks, ConnectionConfig, ConnectionState

__all__ = [
	"ChannelNotOpenError",
	"Connection",
	"ConnectionCallbacks",
	"ConnectionConfig",
	"ConnectionState",
	"ConnectionStateError",
	"GatherTimeoutError",
	"GistLinkError",
	"InitializationError",
	"RoomSourceMissingError",
	"StoreError",
	"StoreRequestError",
	"StoreUnavailableError",
]
