"""Object storage integrations."""

from src.integrations.storage.upload_client import ObjectStorageClient, get_object_storage_client

__all__ = ["ObjectStorageClient", "get_object_storage_client"]
