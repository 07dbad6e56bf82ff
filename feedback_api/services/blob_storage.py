"""Azure Blob Storage sink for feedback records and screenshots."""

import asyncio
import logging
import secrets
import time
import uuid

from azure.core.exceptions import AzureError
from azure.identity import ManagedIdentityCredential
from azure.storage.blob import ContainerClient, ContentSettings

from feedback_api.config import get_settings
from feedback_api.models.feedback import FeedbackRecord

logger = logging.getLogger(__name__)

RECORD_PREFIX = "feedback/"

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
}

# Lazy singletons — live for the process lifetime
_feedback_client: ContainerClient | None = None
_screenshot_client: ContainerClient | None = None


def create_container_client(container_name: str) -> ContainerClient:
    """Create a ContainerClient for the given container.

    Uses the connection string when configured (local development),
    otherwise the managed identity.
    """
    settings = get_settings()
    if settings.azure_storage_connection_string:
        return ContainerClient.from_connection_string(
            settings.azure_storage_connection_string, container_name
        )
    account_url = f"https://{settings.azure_storage_account}.blob.core.windows.net"
    return ContainerClient(
        account_url=account_url,
        container_name=container_name,
        credential=ManagedIdentityCredential(
            client_id=settings.managed_identity_client_id or None
        ),
    )


def _get_feedback_client() -> ContainerClient:
    """Return a shared container client for feedback records (lazy singleton)."""
    global _feedback_client
    if _feedback_client is None:
        _feedback_client = create_container_client(
            get_settings().azure_feedback_container
        )
    return _feedback_client


def _get_screenshot_client() -> ContainerClient:
    """Return a shared container client for screenshots (lazy singleton)."""
    global _screenshot_client
    if _screenshot_client is None:
        _screenshot_client = create_container_client(
            get_settings().azure_screenshot_container
        )
    return _screenshot_client


def check_storage_connectivity() -> bool:
    """Lightweight storage connectivity check — lists 1 blob."""
    try:
        client = _get_feedback_client()
        next(client.list_blobs(results_per_page=1).__iter__())
        return True
    except StopIteration:
        # Container exists but is empty — still connected
        return True
    except Exception:
        return False


def screenshot_blob_name(content_type: str) -> str:
    """Unique, time-ordered blob name for a screenshot upload."""
    ext = _EXTENSIONS.get(content_type, "png")
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}.{ext}"


async def upload_screenshot(data: bytes, content_type: str) -> str:
    """Upload screenshot bytes and return the blob's public URL.

    Raises on any storage error; callers treat uploads as best-effort.
    """
    client = _get_screenshot_client()
    blob = client.get_blob_client(screenshot_blob_name(content_type))
    try:
        # The sync SDK blocks on network I/O, so it runs off the event loop
        await asyncio.to_thread(
            blob.upload_blob,
            data,
            overwrite=False,
            content_settings=ContentSettings(
                content_type=content_type, cache_control="max-age=3600"
            ),
        )
    except AzureError as e:
        logger.warning("Azure API error uploading screenshot %s: %s", blob.blob_name, e)
        raise
    return blob.url


async def insert_feedback(record: FeedbackRecord) -> str:
    """Persist a feedback record as JSON and return its id.

    An id is assigned when the record has none. Errors propagate.
    """
    record_id = record.id or str(uuid.uuid4())
    record = record.model_copy(update={"id": record_id})

    client = _get_feedback_client()
    try:
        blob = client.get_blob_client(f"{RECORD_PREFIX}{record_id}.json")
        await asyncio.to_thread(
            blob.upload_blob,
            record.model_dump_json(indent=2),
            overwrite=False,
            content_settings=ContentSettings(content_type="application/json"),
        )
    except AzureError as e:
        logger.warning("Azure API error writing feedback %s: %s", record_id, e)
        raise
    except Exception as e:
        logger.error("Unexpected error writing feedback %s: %s", record_id, e)
        raise
    return record_id
