"""REST backend for Firebase-compatible realtime databases.

A thin HTTP client speaking the Realtime Database REST protocol.

Routes
------
PUT    /{path}.json    – set a value
PATCH  /{path}.json    – update named children (keys may be paths)
DELETE /{path}.json    – remove a value
GET    /{path}.json    – read once; with ``Accept: text/event-stream`` the
                         server streams ``put``/``patch`` events instead

Transactions use ETags: the value is read with ``X-Firebase-ETag: true`` and
written back with ``if-match``; a ``412`` answer carries the fresh value and
ETag, and the transaction handler runs again.

Connectivity is derived from request outcomes: any answer from the server
means connected, a transport failure means disconnected.

Native callback shapes
----------------------
* write completion: ``completion(error: RestError | None, ref)``
* transaction completion: ``completion(error, committed, snapshot)``
* errors expose ``localized_description`` and ``code``

Environment variables (optional; direct kwargs take precedence):
    FIREAPP_DATABASE_URL  – base URL (e.g. https://my-app.firebaseio.com)
    FIREAPP_AUTH_TOKEN    – ID token or database secret sent as ``auth``
"""

from __future__ import annotations

import json
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator
from urllib.parse import quote

import httpx

from fireapp.backends.base import CONNECTED_PATH, NativeCompletion, normalize_path
from fireapp.backends.tree import set_at, to_native
from fireapp.convert import coerce_value
from fireapp.pushid import generate_push_id

logger = logging.getLogger(__name__)

_UNSET = object()


# ---------------------------------------------------------------------------
# Native types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RestError:
    code: int | str
    localized_description: str

    @classmethod
    def from_response(cls, response: httpx.Response) -> "RestError":
        try:
            message = response.json().get("error")
        except (ValueError, AttributeError):
            message = None
        return cls(response.status_code, message or response.reason_phrase or "Request failed")

    @classmethod
    def from_transport(cls, exc: Exception) -> "RestError":
        return cls("network_error", f"Network error: {exc}")


@dataclass(frozen=True)
class RestReference:
    path: str

    @property
    def key(self) -> str:
        return self.path.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class RestSnapshot:
    path: str
    data: Any

    def exists(self) -> bool:
        return self.data is not None


# ---------------------------------------------------------------------------
# Server-sent events
# ---------------------------------------------------------------------------


def parse_events(lines: Iterable[str]) -> Iterator[tuple[str, str]]:
    """Yield ``(event, data)`` pairs from an event-stream line iterator."""
    event = ""
    data: list[str] = []
    for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            if event or data:
                yield event or "message", "\n".join(data)
            event, data = "", []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event = line[6:].strip()
        elif line.startswith("data:"):
            data.append(line[5:].lstrip())
    if event or data:
        yield event or "message", "\n".join(data)


def apply_event(cache: Any, event: str, payload: dict[str, Any]) -> Any:
    """Fold a ``put``/``patch`` payload into *cache*.

    Raises :class:`ValueError` for payloads that are not shaped like
    ``{"path": ..., "data": ...}``.
    """
    if not isinstance(payload, dict):
        raise ValueError(f"Expected an object payload, got {type(payload).__name__}")
    path = payload.get("path", "/")
    data = payload.get("data")
    if event == "put":
        return set_at(cache, path, data)
    if data is not None and not isinstance(data, dict):
        raise ValueError(f"Patch data must be an object, got {type(data).__name__}")
    for key, value in (data or {}).items():
        cache = set_at(cache, f"{path.rstrip('/')}/{key}", value)
    return cache


class _EventStream:
    """Streaming value listener on one path, running on its own thread."""

    def __init__(
        self,
        backend: "RestBackend",
        path: str,
        on_value: Callable[[Any], None],
        on_cancelled: Callable[[Any], None],
    ) -> None:
        self.backend = backend
        self.path = path
        self.on_value = on_value
        self.on_cancelled = on_cancelled
        self.cache: Any = None
        self.last: Any = _UNSET
        self._stop = threading.Event()
        self._response: httpx.Response | None = None
        self._thread = threading.Thread(target=self._run, name=f"fireapp-stream:{path or '/'}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        response = self._response
        if response is not None:
            response.close()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                with self.backend._client.stream(
                    "GET",
                    self.backend._url(self.path),
                    params=self.backend._params(),
                    headers={"Accept": "text/event-stream"},
                    timeout=httpx.Timeout(self.backend._timeout, read=None),
                ) as response:
                    self._response = response
                    self.backend._set_connected(True)
                    if response.status_code >= 400:
                        response.read()
                        self._cancel(RestError.from_response(response))
                        return
                    logger.debug("Stream opened on '%s'", self.path)
                    for event, data in parse_events(response.iter_lines()):
                        if self._stop.is_set():
                            return
                        try:
                            keep_open = self._handle(event, data)
                        except (ValueError, AttributeError, TypeError) as exc:
                            logger.warning("Malformed '%s' event on '%s': %s", event, self.path, exc)
                            self._cancel(RestError("invalid_event", f"Malformed '{event}' event: {exc}"))
                            return
                        if not keep_open:
                            return
            except (httpx.HTTPError, httpx.StreamError) as exc:
                if self._stop.is_set():
                    return
                self.backend._set_connected(False)
                logger.warning("Stream on '%s' dropped: %s", self.path, exc)
            finally:
                self._response = None
            if self._stop.wait(self.backend._reconnect_delay):
                return

    def _handle(self, event: str, data: str) -> bool:
        if event in ("put", "patch"):
            self.cache = apply_event(self.cache, event, json.loads(data))
            snapshot = RestSnapshot(self.path, self.cache)
            if snapshot.data != self.last:
                self.last = snapshot.data
                self.backend._dispatch(lambda: self._deliver(snapshot))
            return True
        if event == "cancel":
            self._cancel(RestError("cancel", json.loads(data) if data and data != "null" else "Permission denied"))
            return False
        if event == "auth_revoked":
            self._cancel(RestError("auth_revoked", "Credential is no longer valid"))
            return False
        return True

    def _deliver(self, snapshot: RestSnapshot) -> None:
        if not self.stopped:
            self.on_value(snapshot)

    def _cancel(self, error: RestError) -> None:
        self._stop.set()
        self.backend._dispatch(lambda: self.on_cancelled(error))


@dataclass(eq=False)
class _ConnectionListener:
    on_value: Callable[[Any], None]
    active: bool = True

    def deliver(self, connected: bool) -> None:
        if self.active:
            self.on_value(RestSnapshot(CONNECTED_PATH, connected))


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


class RestBackend:
    """HTTP backend for a Firebase-compatible Realtime Database."""

    name = "rest"

    def __init__(
        self,
        database_url: str | None = None,
        *,
        auth_token: str | None = None,
        timeout: float = 10.0,
        max_retries: int = 25,
        reconnect_delay: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = (database_url or os.getenv("FIREAPP_DATABASE_URL", "")).rstrip("/")
        if not self._base_url:
            raise ValueError("A database URL is required for the REST backend")
        self._token = auth_token or os.getenv("FIREAPP_AUTH_TOKEN", "")
        self._timeout = timeout
        self._max_retries = max_retries
        self._reconnect_delay = reconnect_delay
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fireapp-rest")
        self._connected: bool | None = None
        self._connection_listeners: list[_ConnectionListener] = []
        self._streams: list[_EventStream] = []
        self._synced: dict[str, _EventStream] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"/{quote(path)}.json" if path else "/.json"

    def _params(self, **extra: str) -> dict[str, str]:
        params = dict(extra)
        if self._token:
            params["auth"] = self._token
        return params

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, self._url(path), **kwargs)
        except httpx.TransportError:
            self._set_connected(False)
            raise
        self._set_connected(True)
        return response

    def _dispatch(self, fn: Callable[[], Any]) -> None:
        self._executor.submit(self._run, fn)

    @staticmethod
    def _run(fn: Callable[[], Any]) -> None:
        try:
            fn()
        except Exception:
            logger.exception("REST backend task failed")

    def flush(self, timeout: float | None = None) -> None:
        """Block until every task queued so far has run."""
        self._executor.submit(lambda: None).result(timeout)

    def _write(
        self,
        method: str,
        ref: RestReference,
        completion: NativeCompletion | None,
        body: Any = None,
    ) -> None:
        kwargs: dict[str, Any] = {"params": self._params(print="silent")}
        if method != "DELETE":
            kwargs["json"] = body
        try:
            response = self._request(method, ref.path, **kwargs)
        except httpx.TransportError as exc:
            error: RestError | None = RestError.from_transport(exc)
        else:
            error = RestError.from_response(response) if response.status_code >= 400 else None
        if completion is not None:
            completion(error, ref)

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def reference(self, path: str) -> RestReference:
        return RestReference(normalize_path(path))

    def child_by_auto_id(self, ref: RestReference) -> RestReference:
        key = generate_push_id()
        return RestReference(f"{ref.path}/{key}" if ref.path else key)

    def key_of(self, ref: RestReference) -> str:
        return ref.key

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_value(self, ref: RestReference, value: Any, completion: NativeCompletion | None = None) -> None:
        if value is None:
            self.remove_value(ref, completion)
            return
        self._dispatch(lambda: self._write("PUT", ref, completion, value))

    def remove_value(self, ref: RestReference, completion: NativeCompletion | None = None) -> None:
        self._dispatch(lambda: self._write("DELETE", ref, completion))

    def update_children(
        self, ref: RestReference, data: dict[str, Any], completion: NativeCompletion | None = None
    ) -> None:
        self._dispatch(lambda: self._write("PATCH", ref, completion, data))

    def run_transaction(
        self, ref: RestReference, handler: Callable[[Any], Any], completion: NativeCompletion | None = None
    ) -> None:
        self._dispatch(lambda: self._transaction(ref, handler, completion))

    def _transaction(
        self, ref: RestReference, handler: Callable[[Any], Any], completion: NativeCompletion | None
    ) -> None:
        def _finish(error: RestError | None, committed: bool, snapshot: RestSnapshot) -> None:
            if completion is not None:
                completion(error, committed, snapshot)

        snapshot = RestSnapshot(ref.path, None)
        try:
            response = self._request(
                "GET", ref.path, params=self._params(), headers={"X-Firebase-ETag": "true"}
            )
            if response.status_code >= 400:
                _finish(RestError.from_response(response), False, snapshot)
                return
            etag = response.headers.get("ETag", "")
            data = response.json()

            for attempt in range(1, self._max_retries + 1):
                snapshot = RestSnapshot(ref.path, data)
                try:
                    new_value = handler(snapshot)
                except Exception as exc:
                    _finish(RestError("transaction_aborted", str(exc)), False, snapshot)
                    return
                response = self._request(
                    "PUT",
                    ref.path,
                    params=self._params(),
                    headers={"if-match": etag},
                    content=json.dumps(new_value),
                )
                if response.status_code == 412:
                    logger.debug("Transaction on '%s' conflicted (attempt %d)", ref.path, attempt)
                    etag = response.headers.get("ETag", "")
                    data = response.json()
                    continue
                if response.status_code >= 400:
                    _finish(RestError.from_response(response), False, snapshot)
                    return
                _finish(None, True, RestSnapshot(ref.path, response.json()))
                return
        except httpx.TransportError as exc:
            _finish(RestError.from_transport(exc), False, snapshot)
            return

        _finish(RestError("max_retries", f"Transaction gave up after {self._max_retries} attempts"), False, snapshot)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_once(self, ref: RestReference, on_value: Callable[[Any], None], on_cancelled: Callable[[Any], None]) -> None:
        self._dispatch(lambda: self._read_once(ref, on_value, on_cancelled))

    def _read_once(self, ref: RestReference, on_value: Callable[[Any], None], on_cancelled: Callable[[Any], None]) -> None:
        if ref.path == CONNECTED_PATH:
            on_value(RestSnapshot(ref.path, self._check_connection()))
            return
        try:
            response = self._request("GET", ref.path, params=self._params())
        except httpx.TransportError as exc:
            on_cancelled(RestError.from_transport(exc))
            return
        if response.status_code >= 400:
            on_cancelled(RestError.from_response(response))
            return
        on_value(RestSnapshot(ref.path, response.json()))

    def add_value_listener(
        self, ref: RestReference, on_value: Callable[[Any], None], on_cancelled: Callable[[Any], None]
    ) -> _EventStream | _ConnectionListener:
        if ref.path == CONNECTED_PATH:
            listener = _ConnectionListener(on_value)
            with self._lock:
                self._connection_listeners.append(listener)

            def _initial() -> None:
                if self._connected is None:
                    # The first state change notifies every connection listener.
                    self._check_connection()
                else:
                    listener.deliver(self._connected)

            self._dispatch(_initial)
            return listener

        stream = _EventStream(self, ref.path, on_value, on_cancelled)
        with self._lock:
            self._streams.append(stream)
        stream.start()
        return stream

    def remove_value_listener(self, ref: RestReference, registration: Any) -> None:
        with self._lock:
            if isinstance(registration, _ConnectionListener):
                registration.active = False
                if registration in self._connection_listeners:
                    self._connection_listeners.remove(registration)
                return
            if registration in self._streams:
                self._streams.remove(registration)
        if isinstance(registration, _EventStream):
            registration.stop()

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    def _check_connection(self) -> bool:
        if self._connected is None:
            try:
                self._request("GET", "", params=self._params(shallow="true"))
            except httpx.TransportError:
                pass
        return bool(self._connected)

    def _set_connected(self, connected: bool) -> None:
        with self._lock:
            if connected == self._connected:
                return
            self._connected = connected
            listeners = list(self._connection_listeners)
        logger.info("Database %s", "connected" if connected else "disconnected")
        for listener in listeners:
            self._dispatch(lambda listener=listener: listener.deliver(connected))

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_persistence_enabled(self, enabled: bool) -> None:
        if enabled:
            logger.warning("The REST backend has no local persistence; setting ignored")

    def keep_synced(self, ref: RestReference, synced: bool) -> None:
        with self._lock:
            existing = self._synced.pop(ref.path, None)
        if existing is not None:
            existing.stop()
        if synced:
            stream = _EventStream(self, ref.path, lambda _: None, lambda _: None)
            with self._lock:
                self._synced[ref.path] = stream
            stream.start()

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def snapshot_exists(self, snapshot: RestSnapshot) -> bool:
        return snapshot.exists()

    def snapshot_value(self, snapshot: RestSnapshot) -> Any:
        return to_native(snapshot.data)

    def convert(self, snapshot: RestSnapshot, type_: type) -> Any:
        return coerce_value(self.snapshot_value(snapshot), type_)

    def encode(self, value: Any) -> Any:
        return value

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        with self._lock:
            streams = list(self._streams) + list(self._synced.values())
            self._streams.clear()
            self._synced.clear()
            self._connection_listeners.clear()
        for stream in streams:
            stream.stop()
        self._executor.shutdown(wait=True)
        self._client.close()

    def __enter__(self) -> "RestBackend":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
