"""Shared test fixtures for yams-sync."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from yams_sync.database import ensure_tables
from yams_sync.services.checksum_cache import ChecksumCache
from yams_sync.services.circuit_breaker import CircuitBreaker
from yams_sync.services.error_log import ErrorLog
from yams_sync.services.http_transport import HTTPTransport
from yams_sync.services.local_store import LocalImageStore
from yams_sync.services.remote_store import RemoteStore
from yams_sync.services.signer import JWTSigner
from yams_sync.services.sync_engine import SyncEngine
from yams_sync.services.watermark import Watermark

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from pathlib import Path

    from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
    from sqlalchemy.ext.asyncio import AsyncEngine

YAMS_URL = "https://yams.test/api/v1"
TENANT_ID = "tenant-1"
DOMAIN_ID = "domain-1"
BUCKET_ID = "bucket-1"
ACCESS_KEY_ID = "access-key-1"

OBJECTS_PATH = f"/tenants/{TENANT_ID}/domains/{DOMAIN_ID}/buckets/{BUCKET_ID}/objects"
EPOCH = datetime(1970, 1, 1)


@pytest.fixture(scope="session")
def rsa_private_key() -> RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_key_path(
    tmp_path_factory: pytest.TempPathFactory, rsa_private_key: RSAPrivateKey
) -> Path:
    """PKCS#8 PEM file holding the test signing key."""
    path = tmp_path_factory.mktemp("keys") / "writer-key.rsa"
    path.write_bytes(
        rsa_private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return path


@pytest.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await ensure_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


class FakeYams:
    """In-memory YAMS bucket served through ``httpx.MockTransport``.

    Every request is recorded together with its decoded JWT claims.
    ``overrides`` maps ``(method, name)`` to a forced status code; list
    requests use the name ``""``.
    """

    def __init__(self, public_key: Any) -> None:
        self.public_key = public_key
        self.objects: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []
        self.claims: list[dict[str, Any]] = []
        self.overrides: dict[tuple[str, str], int] = {}
        self.md5_overrides: dict[str, str] = {}
        self.default_put_status: int | None = None
        self.list_body: str | None = None
        self.refuse_connections = False

    def methods(self) -> list[str]:
        return [req.method for req in self.requests]

    def store(self, name: str, data: bytes) -> None:
        self.objects[name] = data

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.refuse_connections:
            raise httpx.ConnectError("connection refused", request=request)
        token = request.url.params["jwt"]
        claims = jwt.decode(token, self.public_key, algorithms=["RS512"])
        self.claims.append(claims)

        raw_path = request.url.raw_path.decode("ascii").split("?", 1)[0]
        if request.method == "POST":
            name = claims["metadata"]["oid"]
        elif raw_path == "/api/v1" + OBJECTS_PATH:
            name = ""
        else:
            name = unquote(raw_path.rsplit("/", 1)[1])

        forced = self.overrides.get((request.method, name))
        if forced is not None:
            return httpx.Response(forced, text="forced")

        if request.method == "POST":
            if self.default_put_status is not None:
                return httpx.Response(self.default_put_status, text="forced")
            if name in self.objects:
                return httpx.Response(409, text="duplicate")
            self.objects[name] = request.content
            return httpx.Response(201)
        if request.method == "DELETE":
            if self.objects.pop(name, None) is None:
                return httpx.Response(404)
            return httpx.Response(202)
        if request.method == "HEAD":
            if name not in self.objects:
                return httpx.Response(404)
            actual = hashlib.md5(self.objects[name]).hexdigest()  # noqa: S324
            md5 = self.md5_overrides.get(name, actual)
            return httpx.Response(200, headers={"Content-Md5": md5} if md5 else {})
        if request.method == "GET":
            if self.list_body is not None:
                return httpx.Response(200, text=self.list_body)
            body = {
                "continuation_token": "",
                "objects": [
                    {
                        "object_id": key,
                        "md5": hashlib.md5(data).hexdigest(),  # noqa: S324
                        "size": len(data),
                        "last_modified": 0,
                    }
                    for key, data in self.objects.items()
                ],
            }
            return httpx.Response(200, text=json.dumps(body))
        return httpx.Response(405)


@pytest.fixture
def yams(rsa_private_key: RSAPrivateKey) -> FakeYams:
    return FakeYams(rsa_private_key.public_key())


@pytest.fixture
def images_root(tmp_path: Path) -> Path:
    root = tmp_path / "images"
    root.mkdir()
    return root


@pytest.fixture
def write_image(images_root: Path) -> Callable[[str, bytes], Path]:
    """Write an image at ``<root>/<first two chars>/<name>``."""

    def _write(name: str, data: bytes) -> Path:
        path = images_root / name[:2] / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    return _write


@pytest.fixture
def local_store(images_root: Path) -> LocalImageStore:
    return LocalImageStore(images_root)


@pytest.fixture
async def http_transport(yams: FakeYams) -> AsyncGenerator[HTTPTransport]:
    breaker = CircuitBreaker("test", open_timeout=0.0)
    transport = HTTPTransport(
        YAMS_URL,
        breaker,
        retry_delay=0.0,
        transport=httpx.MockTransport(yams),
    )
    yield transport
    await transport.aclose()


@pytest.fixture
def remote_store(
    http_transport: HTTPTransport, rsa_key_path: Path, local_store: LocalImageStore
) -> RemoteStore:
    return RemoteStore(
        http_transport,
        JWTSigner(rsa_key_path),
        local_store,
        access_key_id=ACCESS_KEY_ID,
        tenant_id=TENANT_ID,
        domain_id=DOMAIN_ID,
        bucket_id=BUCKET_ID,
        max_concurrency=4,
    )


@pytest.fixture
def error_log(session_factory: async_sessionmaker[AsyncSession]) -> ErrorLog:
    return ErrorLog(session_factory, page_size=2)


@pytest.fixture
def watermark(session_factory: async_sessionmaker[AsyncSession]) -> Watermark:
    return Watermark(session_factory, EPOCH)


@pytest.fixture
def checksum_cache(session_factory: async_sessionmaker[AsyncSession]) -> ChecksumCache:
    return ChecksumCache(session_factory, prefix="test:")


@pytest.fixture
def sync_engine(
    remote_store: RemoteStore,
    local_store: LocalImageStore,
    error_log: ErrorLog,
    watermark: Watermark,
    checksum_cache: ChecksumCache,
) -> SyncEngine:
    return SyncEngine(remote_store, local_store, error_log, watermark, checksum_cache)
