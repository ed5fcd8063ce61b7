"""Azure Blob Storage adapter for submission media.

Devices never stream media through the API: they receive a short-lived SAS
URL and PUT the bytes straight into the container.

Requires: AZURE_STORAGE_CONNECTION_STRING and AZURE_STORAGE_CONTAINER env vars.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

logger = logging.getLogger(__name__)


class AzureBlobStore:
    """Azure Blob Storage backend keyed by storage key."""

    def __init__(self, connection_string: str, container_name: str = "negosyo-media", url_ttl_seconds: int = 3600):
        if not connection_string:
            raise ValueError(
                "Azure Blob Storage requires AZURE_STORAGE_CONNECTION_STRING. "
                "Set the connection string via environment variable."
            )
        self._connection_string = connection_string
        self._container_name = container_name
        self._url_ttl_seconds = url_ttl_seconds
        self._client = None

    def _get_client(self):
        """Lazy-initialize the BlobServiceClient and make sure the container exists."""
        if self._client is None:
            from azure.core.exceptions import ResourceNotFoundError
            from azure.storage.blob import BlobServiceClient

            self._client = BlobServiceClient.from_connection_string(self._connection_string)
            container_client = self._client.get_container_client(self._container_name)
            try:
                container_client.get_container_properties()
            except ResourceNotFoundError:
                self._client.create_container(self._container_name)
                logger.info("Created blob container: %s", self._container_name)
        return self._client

    def _blob_client(self, key: str):
        return self._get_client().get_blob_client(container=self._container_name, blob=key)

    def _sas_url(self, key: str, *, write: bool) -> str:
        from azure.storage.blob import BlobSasPermissions, generate_blob_sas

        client = self._get_client()
        permission = BlobSasPermissions(create=True, write=True) if write else BlobSasPermissions(read=True)
        token = generate_blob_sas(
            account_name=client.account_name,
            container_name=self._container_name,
            blob_name=key,
            account_key=client.credential.account_key,
            permission=permission,
            expiry=datetime.now(timezone.utc) + timedelta(seconds=self._url_ttl_seconds),
        )
        return f"{self._blob_client(key).url}?{token}"

    def upload_target(self, key: str, content_type: str) -> tuple[str, dict[str, str]]:
        """Presigned PUT URL plus the headers the client must send with it."""
        headers = {"x-ms-blob-type": "BlockBlob", "Content-Type": content_type}
        return self._sas_url(key, write=True), headers

    def resolve_url(self, key: str) -> str:
        return self._sas_url(key, write=False)

    def put(self, key: str, data: bytes, content_type: str | None = None) -> str:
        from azure.storage.blob import ContentSettings

        content_settings = ContentSettings(content_type=content_type) if content_type else None
        try:
            self._blob_client(key).upload_blob(data, overwrite=True, content_settings=content_settings)
            logger.debug("Uploaded blob: %s (%d bytes)", key, len(data))
        except Exception:
            logger.exception("Failed to upload blob: %s", key)
            raise
        return key

    def get(self, key: str) -> Optional[bytes]:
        from azure.core.exceptions import ResourceNotFoundError

        try:
            return self._blob_client(key).download_blob().readall()
        except ResourceNotFoundError:
            return None

    def size(self, key: str) -> Optional[int]:
        from azure.core.exceptions import ResourceNotFoundError

        try:
            return self._blob_client(key).get_blob_properties().size
        except ResourceNotFoundError:
            return None

    def exists(self, key: str) -> bool:
        return self.size(key) is not None

    def delete(self, key: str) -> bool:
        from azure.core.exceptions import ResourceNotFoundError

        try:
            self._blob_client(key).delete_blob()
            logger.debug("Deleted blob: %s", key)
            return True
        except ResourceNotFoundError:
            return False
