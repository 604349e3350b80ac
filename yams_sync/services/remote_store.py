"""Typed operations on a YAMS bucket: put, delete, head and list objects."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import quote

from pydantic import ValidationError

from yams_sync.exceptions import (
    BucketNotFoundError,
    DuplicateError,
    ErrorResponse,
    InternalError,
    ObjectNotFoundError,
    UnauthorizedError,
    YamsError,
)
from yams_sync.schemas.remote import ListObjectsResponse

if TYPE_CHECKING:
    from yams_sync.schemas.image import Image
    from yams_sync.schemas.remote import RemoteObject
    from yams_sync.services.http_transport import HTTPRequest, HTTPResponse, HTTPTransport
    from yams_sync.services.signer import JWTSigner

logger = logging.getLogger(__name__)

_PUT_ERRORS: dict[int, type[YamsError]] = {
    400: InternalError,
    403: UnauthorizedError,
    404: BucketNotFoundError,
    409: DuplicateError,
    500: InternalError,
    503: InternalError,
}

_DELETE_ERRORS: dict[int, type[YamsError]] = {
    403: UnauthorizedError,
    404: ObjectNotFoundError,
}

_READ_ERRORS: dict[int, type[YamsError]] = {
    404: ObjectNotFoundError,
}


class ImageOpener(Protocol):
    """Reads the bytes of a local image for upload."""

    async def read_image(self, image: Image) -> bytes: ...


class RemoteStore:
    """Client for one tenant/domain/bucket of the YAMS management API."""

    def __init__(
        self,
        transport: HTTPTransport,
        signer: JWTSigner,
        opener: ImageOpener,
        *,
        access_key_id: str,
        tenant_id: str,
        domain_id: str,
        bucket_id: str,
        max_concurrency: int = 100,
    ) -> None:
        self.transport = transport
        self.signer = signer
        self.opener = opener
        self.access_key_id = access_key_id
        self.tenant_id = tenant_id
        self.domain_id = domain_id
        self.bucket_id = bucket_id
        self.max_concurrency = max_concurrency

    def objects_path(self, image_name: str | None = None) -> str:
        """Path of the bucket's object collection, or of one object."""
        path = (
            f"/tenants/{self.tenant_id}/domains/{self.domain_id}"
            f"/buckets/{self.bucket_id}/objects"
        )
        if image_name is not None:
            path = f"{path}/{quote(image_name, safe='')}"
        return path

    def _signed_request(
        self, method: str, path: str, metadata: dict[str, Any] | None = None
    ) -> HTTPRequest:
        claims = self.signer.claims_for(method, path, metadata)
        token = self.signer.token(claims)
        return (
            self.transport.new_request()
            .set_method(method)
            .set_path(path)
            .set_query_params({"jwt": token, "AccessKeyId": self.access_key_id})
        )

    async def _send(self, req: HTTPRequest) -> HTTPResponse:
        try:
            return await self.transport.send(req)
        except ErrorResponse as exc:
            return exc.response

    async def put(self, image: Image) -> None:
        """Upload ``image``. Raises DuplicateError when the name is taken."""
        name = image.name
        data = await self.opener.read_image(image)
        req = self._signed_request("POST", self.objects_path(), {"oid": name}).set_image_body(
            data
        )
        resp = await self._send(req)
        error_cls = _PUT_ERRORS.get(resp.status_code)
        if error_cls is not None:
            logger.debug("PUT %s failed: %d %s", name, resp.status_code, resp.body[:200])
            raise error_cls(f"put {name}: HTTP {resp.status_code}")

    async def delete(self, image_name: str, force: bool = False) -> None:
        """Delete an object. ``force`` requests immediate (non-soft) removal."""
        req = self._signed_request(
            "DELETE",
            self.objects_path(image_name),
            {"oid": image_name, "force": force},
        )
        resp = await self._send(req)
        if resp.status_code == 202:
            return
        error_cls = _DELETE_ERRORS.get(resp.status_code, InternalError)
        raise error_cls(f"delete {image_name}: HTTP {resp.status_code}")

    async def head(self, image_name: str) -> str:
        """Return the remote MD5 (``Content-Md5``) of an object, "" when absent."""
        req = self._signed_request("HEAD", self.objects_path(image_name))
        resp = await self._send(req)
        if resp.status_code == 200:
            return resp.headers.get("Content-Md5", "").strip().lower()
        error_cls = _READ_ERRORS.get(resp.status_code, InternalError)
        raise error_cls(f"head {image_name}: HTTP {resp.status_code}")

    async def list_objects(self) -> list[RemoteObject]:
        """List the objects in the bucket."""
        req = self._signed_request("GET", self.objects_path())
        resp = await self._send(req)
        if resp.status_code != 200:
            error_cls = _READ_ERRORS.get(resp.status_code, InternalError)
            raise error_cls(f"list: HTTP {resp.status_code}")
        try:
            listing = ListObjectsResponse.model_validate_json(resp.body)
        except ValidationError as exc:
            raise InternalError(f"list: undecodable response: {exc}") from exc
        return listing.objects
