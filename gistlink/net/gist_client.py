"""Document store client backed by GitHub Gists.

This is intentionally unaware of rooms and WebRTC. It only lists, reads,
creates and patches gists and fetches raw file content. Anything but a 2xx
answer is raised as a `StoreError`; the one exception is `get()`, where 404
means "no such container" and returns None.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional, Protocol, Union

import httpx

from ..errors import StoreRequestError, StoreUnavailableError
from .protocol import ContainerInfo, FileEntry


logger = logging.getLogger(__name__)


DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT = 15.0
PAGE_SIZE = 100

FileRef = Union[str, FileEntry]


class DocumentStore(Protocol):
	async def list_containers(self) -> List[ContainerInfo]: ...

	async def get(self, container_id: str) -> Optional[ContainerInfo]: ...

	async def create(self, description: str, files: Dict[str, Dict[str, str]]) -> Dict[str, Any]: ...

	async def update(self, container_id: str, files: Dict[str, Dict[str, str]]) -> Dict[str, Any]: ...

	async def fetch_file_json(self, ref: FileRef) -> Any: ...


class GistClient:
	def __init__(
		self,
		token: str,
		*,
		api_url: str = DEFAULT_API_URL,
		timeout: float = DEFAULT_TIMEOUT,
		client: Optional[httpx.AsyncClient] = None,
	):
		self.token = token
		self.api_url = api_url.rstrip("/")
		self._owns_client = client is None
		self._client = client or httpx.AsyncClient(timeout=timeout)

	async def aclose(self) -> None:
		if self._owns_client:
			await self._client.aclose()

	async def list_containers(self) -> List[ContainerInfo]:
		out: List[ContainerInfo] = []
		url: Optional[str] = f"{self.api_url}/gists"
		params: Optional[Dict[str, Any]] = {"per_page": PAGE_SIZE}
		while url:
			resp = await self._send("GET", url, params=params)
			page = self._json(resp)
			if not isinstance(page, list):
				raise StoreRequestError("GET", url, resp.status_code, "expected a list of gists")
			out.extend(page)
			# The next link already carries the paging params.
			url = resp.links.get("next", {}).get("url")
			params = None
		logger.debug("store list containers=%s", len(out))
		return out

	async def get(self, container_id: str) -> Optional[ContainerInfo]:
		url = f"{self.api_url}/gists/{container_id}"
		resp = await self._send("GET", url, allow_missing=True)
		if resp.status_code == 404:
			logger.debug("store get id=%s missing", container_id)
			return None
		return self._json(resp)

	async def create(self, description: str, files: Dict[str, Dict[str, str]]) -> Dict[str, Any]:
		url = f"{self.api_url}/gists"
		resp = await self._send("POST", url, body={"description": description, "files": files})
		created = self._json(resp)
		logger.info("store created container id=%s", created.get("id"))
		return created

	async def update(self, container_id: str, files: Dict[str, Dict[str, str]]) -> Dict[str, Any]:
		"""Patch the named files of a container; files not in `files` are left alone."""

		url = f"{self.api_url}/gists/{container_id}"
		resp = await self._send("PATCH", url, body={"files": files})
		logger.debug("store update id=%s files=%s", container_id, list(files))
		return self._json(resp)

	async def fetch_file_text(self, ref: FileRef) -> str:
		if isinstance(ref, dict) and "content" in ref and not ref.get("truncated"):
			return str(ref["content"])
		url = ref if isinstance(ref, str) else ref["raw_url"]
		try:
			resp = await self._client.get(url)
		except httpx.HTTPError as e:
			raise StoreUnavailableError("GET", url, e) from e
		if not resp.is_success:
			raise StoreRequestError("GET", url, resp.status_code, resp.text)
		return resp.text

	async def fetch_file_json(self, ref: FileRef) -> Any:
		text = await self.fetch_file_text(ref)
		url = ref if isinstance(ref, str) else ref.get("raw_url", "")
		try:
			return json.loads(text) if text else {}
		except ValueError as e:
			raise StoreRequestError("GET", url, 200, f"invalid json: {e}") from e

	async def _send(
		self,
		method: str,
		url: str,
		*,
		params: Optional[Dict[str, Any]] = None,
		body: Optional[Dict[str, Any]] = None,
		allow_missing: bool = False,
	) -> httpx.Response:
		headers = {
			"Accept": "application/vnd.github.v3+json",
			"Authorization": f"token {self.token}",
		}
		target = httpx.URL(url)
		if method == "GET":
			# no-cache: raw gist reads are served through a CDN
			params = dict(params or {})
			params["t"] = str(int(time.time() * 1000))
		if params:
			# merge, not replace: a next link already carries its paging query
			target = target.copy_merge_params(params)
		try:
			resp = await self._client.request(method, target, headers=headers, json=body)
		except httpx.HTTPError as e:
			logger.warning("store request failed method=%s url=%s error=%s", method, url, e)
			raise StoreUnavailableError(method, url, e) from e

		if allow_missing and resp.status_code == 404:
			return resp
		if not resp.is_success:
			logger.warning("store request rejected method=%s url=%s status=%s", method, url, resp.status_code)
			raise StoreRequestError(method, url, resp.status_code, resp.text)
		return resp

	@staticmethod
	def _json(resp: httpx.Response) -> Any:
		try:
			return resp.json()
		except ValueError as e:
			raise StoreRequestError(resp.request.method, str(resp.request.url), resp.status_code, f"invalid json: {e}") from e
