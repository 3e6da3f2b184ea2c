"""
Object Storage for Generated Artifacts

Private blob storage for rendered deal documents and signed envelopes.
Two backends, selected by STORAGE_MODE:

    local     -> files under STORAGE_LOCAL_ROOT (development and tests)
    supabase  -> private Supabase Storage bucket, read through signed URLs

Keys carry their backend as a prefix ("local:" / "supabase:") so a stored
key stays readable after the configured mode changes.
"""

import logging
import os
import re
import uuid
from datetime import datetime
from typing import Optional

from flask import current_app
from supabase import create_client, Client

from services.errors import AppError, ConfigurationError

logger = logging.getLogger(__name__)

LOCAL_PREFIX = 'local:'
SUPABASE_PREFIX = 'supabase:'

# Supabase client singleton
_supabase_client: Client = None


class StorageError(AppError):
    status_code = 502


def get_supabase_client() -> Client:
    """
    Get or create the Supabase client.
    Uses SUPABASE_URL and SUPABASE_SERVICE_KEY from config.
    """
    global _supabase_client

    if _supabase_client is None:
        supabase_url = current_app.config.get('SUPABASE_URL')
        supabase_key = current_app.config.get('SUPABASE_SERVICE_KEY')

        if not supabase_url or not supabase_key:
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY are required when STORAGE_MODE=supabase."
            )

        _supabase_client = create_client(supabase_url, supabase_key)

    return _supabase_client


def _safe_file_name(file_name: str) -> str:
    cleaned = re.sub(r'[^A-Za-z0-9._-]+', '-', file_name or 'file').strip('-')
    return cleaned or 'file'


def build_object_path(key_prefix: str, file_name: str) -> str:
    """
    Build a unique object path under a prefix.

    Example:
        "4/deals/17/documents", "BUYERS_ORDER.pdf"
        -> "4/deals/17/documents/20260115T101500-3f2a...-BUYERS_ORDER.pdf"
    """
    stamp = datetime.utcnow().strftime('%Y%m%dT%H%M%S')
    return f"{key_prefix.strip('/')}/{stamp}-{uuid.uuid4().hex}-{_safe_file_name(file_name)}"


def _local_root() -> str:
    return os.path.abspath(current_app.config.get('STORAGE_LOCAL_ROOT', '.generated-files'))


def _local_path(object_path: str) -> str:
    root = _local_root()
    full_path = os.path.abspath(os.path.join(root, object_path))
    if not full_path.startswith(root + os.sep):
        raise StorageError(f"Invalid storage key: {object_path}")
    return full_path


def put_object(key_prefix: str, body: bytes, content_type: str, file_name: str) -> str:
    """
    Store bytes privately.

    Returns:
        The storage key to persist on the owning row
    """
    mode = current_app.config.get('STORAGE_MODE', 'local')
    object_path = build_object_path(key_prefix, file_name)

    if mode == 'local':
        full_path = _local_path(object_path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, 'wb') as f:
            f.write(body)
        logger.debug(f"Stored {len(body)} bytes at {full_path}")
        return f"{LOCAL_PREFIX}{object_path}"

    if mode == 'supabase':
        bucket = current_app.config['SUPABASE_BUCKET']
        try:
            get_supabase_client().storage.from_(bucket).upload(
                path=object_path,
                file=body,
                file_options={'content-type': content_type}
            )
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Supabase upload failed for {object_path}: {e}")
            raise StorageError(f"Failed to store {file_name}.")
        return f"{SUPABASE_PREFIX}{object_path}"

    raise ConfigurationError(f"Unsupported STORAGE_MODE: {mode}")


def get_object_buffer(key: str) -> bytes:
    """Read a stored object back as bytes."""
    if key.startswith(LOCAL_PREFIX):
        full_path = _local_path(key[len(LOCAL_PREFIX):])
        if not os.path.exists(full_path):
            raise StorageError(f"Stored file not found: {key}", 404)
        with open(full_path, 'rb') as f:
            return f.read()

    if key.startswith(SUPABASE_PREFIX):
        bucket = current_app.config['SUPABASE_BUCKET']
        try:
            return get_supabase_client().storage.from_(bucket).download(key[len(SUPABASE_PREFIX):])
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Supabase download failed for {key}: {e}")
            raise StorageError("Failed to read stored file.")

    raise StorageError(f"Unrecognized storage key: {key}")


def get_object_download_url(key: str, expires_in: int = None) -> Optional[str]:
    """
    Signed URL for a stored object.

    Returns None for backends without URL access; callers then stream
    the buffer from get_object_buffer() instead.
    """
    if not key.startswith(SUPABASE_PREFIX):
        return None

    if expires_in is None:
        expires_in = current_app.config.get('SIGNED_URL_EXPIRES_IN', 300)

    bucket = current_app.config['SUPABASE_BUCKET']
    try:
        response = get_supabase_client().storage.from_(bucket).create_signed_url(
            path=key[len(SUPABASE_PREFIX):],
            expires_in=expires_in
        )
    except ConfigurationError:
        raise
    except Exception as e:
        logger.error(f"Failed to sign URL for {key}: {e}")
        raise StorageError("Failed to create download link.")

    return response['signedURL']
