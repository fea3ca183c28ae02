"""
Cloud sync: remote API transport and the encrypted save/load client.

The remote service needs three operations:

    authenticate(credentials)        → session token
    save(token, payload, version)    → new version   | VersionConflict
    load(token)                      → payload+version | RemoteNotFound

``HttpRemoteApi`` maps them onto a small JSON-over-HTTP API with requests.
``CloudSyncClient`` layers serialization, encryption and board validation on
top, so a payload that fails any check never reaches the ActionEngine.

Every call here blocks; it is only ever run on the persistence worker.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import requests

from .crypto import EncryptedSnapshot, SnapshotCipher
from .errors import (
    CorruptDocument,
    NetworkUnavailable,
    RemoteNotFound,
    SyncError,
    Tampered,
    Unauthorized,
    VersionConflict,
)
from .model import BoardModel
from .serializer import dumps, loads

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10  # seconds


@dataclass(frozen=True)
class RemoteSnapshot:
    """Encrypted payload as stored remotely, plus its version counter."""
    payload: str
    version: int


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Transport
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class RemoteApi:
    """The three operations the sync client needs from a remote store."""

    def authenticate(self, username: str, password: str) -> str:
        raise NotImplementedError

    def save(self, token: str, payload: str, base_version: Optional[int], force: bool = False) -> int:
        raise NotImplementedError

    def load(self, token: str) -> RemoteSnapshot:
        raise NotImplementedError


class HttpRemoteApi(RemoteApi):
    """
    JSON-over-HTTP remote store.

        POST {base}/auth      {"username", "password"}          → {"token"}
        PUT  {base}/snapshot  {"payload", "base_version", "force"} → {"version"}
                              409 → {"version": <remote>}
        GET  {base}/snapshot                                     → {"payload", "version"}
                              404 → nothing saved yet
    """

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()

    def _request(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> requests.Response:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = self.http.request(
                method, f"{self.base_url}{path}", headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.Timeout as e:
            raise NetworkUnavailable(f"{method} {path} timed out after {self.timeout}s: {e}")
        except requests.RequestException as e:
            raise NetworkUnavailable(f"{method} {path} failed: {e}")

        if response.status_code in (401, 403):
            raise Unauthorized(f"{method} {path} rejected ({response.status_code})")
        if response.status_code >= 500:
            raise NetworkUnavailable(f"{method} {path} server error ({response.status_code})")
        return response

    @staticmethod
    def _json(response: requests.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            raise SyncError(f"remote returned non-JSON body (HTTP {response.status_code})")
        if not isinstance(data, dict):
            raise SyncError("remote returned an unexpected JSON shape")
        return data

    def authenticate(self, username: str, password: str) -> str:
        response = self._request("POST", "/auth", json={"username": username, "password": password})
        if not response.ok:
            raise SyncError(f"authentication failed (HTTP {response.status_code})")
        token = self._json(response).get("token")
        if not token:
            raise Unauthorized("remote did not issue a session token")
        return token

    def save(self, token: str, payload: str, base_version: Optional[int], force: bool = False) -> int:
        response = self._request(
            "PUT", "/snapshot", token=token,
            json={"payload": payload, "base_version": base_version, "force": force},
        )
        if response.status_code == 409:
            remote = self._json(response).get("version")
            raise VersionConflict(remote_version=remote, known_version=base_version)
        if not response.ok:
            raise SyncError(f"save rejected (HTTP {response.status_code})")
        data = self._json(response)
        try:
            return int(data["version"])
        except (KeyError, TypeError, ValueError) as e:
            raise SyncError(f"remote save response is incomplete: {e}")

    def load(self, token: str) -> RemoteSnapshot:
        response = self._request("GET", "/snapshot", token=token)
        if response.status_code == 404:
            raise RemoteNotFound("no snapshot stored for this account")
        if not response.ok:
            raise SyncError(f"load rejected (HTTP {response.status_code})")
        data = self._json(response)
        try:
            return RemoteSnapshot(payload=data["payload"], version=int(data["version"]))
        except (KeyError, TypeError, ValueError) as e:
            raise SyncError(f"remote snapshot response is incomplete: {e}")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Client
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CloudSyncClient:
    """Authenticated, encrypted save/load of whole board snapshots."""

    def __init__(self, api: RemoteApi, cipher: SnapshotCipher, known_version: Optional[int] = None):
        self.api = api
        self.cipher = cipher
        self.known_version = known_version
        self._token: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self._token is not None

    def authenticate(self, username: str, password: str) -> None:
        """Sign in once per session."""
        self._token = self.api.authenticate(username, password)
        logger.info(f"Signed in to remote store as {username}")

    def sign_out(self) -> None:
        self._token = None

    def _require_token(self) -> str:
        if self._token is None:
            raise Unauthorized("not signed in")
        return self._token

    def save(self, document: bytes, force: bool = False) -> int:
        """Encrypt and upload a serialized board; returns the new remote version."""
        token = self._require_token()
        snapshot = self.cipher.encrypt(document)
        try:
            version = self.api.save(token, snapshot.to_payload(), self.known_version, force=force)
        except Unauthorized:
            self._token = None
            raise
        self.known_version = version
        logger.info(f"Remote snapshot saved (v{version}, {len(document)} bytes)")
        return version

    def save_board(self, model: BoardModel, force: bool = False) -> int:
        return self.save(dumps(model), force=force)

    def load(self) -> Tuple[BoardModel, int]:
        """Download, decrypt and validate the remote board."""
        token = self._require_token()
        try:
            remote = self.api.load(token)
        except Unauthorized:
            self._token = None
            raise
        plaintext = self.cipher.decrypt(EncryptedSnapshot.from_payload(remote.payload))
        try:
            model, _ = loads(plaintext)
        except CorruptDocument as e:
            raise Tampered(f"remote board failed validation: {e}")
        self.known_version = remote.version
        logger.info(f"Remote snapshot loaded (v{remote.version}, {model!r})")
        return model, remote.version
