"""Exception types raised by gistlink."""

from __future__ import annotations

from typing import Optional


class GistLinkError(Exception):
	pass


class StoreError(GistLinkError):
	"""Base class for document store failures."""


class StoreRequestError(StoreError):
	"""The store answered with a non-success status."""

	def __init__(self, method: str, url: str, status: int, body: str = ""):
		super().__init__(f"{method} {url} failed with status {status}")
		self.method = method
		self.url = url
		self.status = status
		self.body = body


class StoreUnavailableError(StoreError):
	"""The store could not be reached at all (DNS, connect, timeout...)."""

	def __init__(self, method: str, url: str, cause: Optional[BaseException] = None):
		super().__init__(f"{method} {url} unavailable: {cause}")
		self.method = method
		self.url = url
		self.cause = cause


class InitializationError(GistLinkError):
	"""Container discovery or creation failed. Terminal for a Connection."""


class RoomSourceMissingError(GistLinkError):
	def __init__(self, container_id: str):
		super().__init__(f"container {container_id} was deleted while in use")
		self.container_id = container_id


class GatherTimeoutError(GistLinkError, TimeoutError):
	pass


class ChannelNotOpenError(GistLinkError):
	pass


class ConnectionStateError(GistLinkError):
	pass
