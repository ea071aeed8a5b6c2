"""
Attachment Storage Service.

Uploads attachment bytes to Supabase Storage and returns a long-lived
signed URL.  Uploads are best-effort: when storage is not configured, the
clinic is unknown, or the call fails, the caller keeps the attachment as a
local pending file.

Object keys follow ``<scope>/<clinic_id>/<owner_id>/<stamp>_<file name>``.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel
from supabase import Client as SupabaseClient, create_client

from orthoscan.config import AppConfig
from orthoscan.logger import StructuredLogger
from orthoscan.utils.general import now_utc
from orthoscan.utils.string_helpers import sanitize_file_name, slugify_owner


class StoredFile(BaseModel):
    """Result of a successful upload."""

    path: str
    url: str


class AttachmentStorageService:
    """Thin wrapper over a Supabase Storage bucket.

    The client is created lazily from ``SUPABASE_URL`` /
    ``SUPABASE_ANON_KEY`` unless one is injected (tests pass a fake).
    """

    def __init__(
        self,
        config: AppConfig,
        logger: StructuredLogger,
        client: Optional[SupabaseClient] = None,
    ) -> None:
        self._config: AppConfig = config
        self._logger: StructuredLogger = logger
        self._client: Optional[SupabaseClient] = client

    @property
    def enabled(self) -> bool:
        return self._client is not None or self._config.storage_enabled

    def _get_client(self) -> Optional[SupabaseClient]:
        if self._client is None and self._config.storage_enabled:
            try:
                self._client = create_client(
                    self._config.SUPABASE_URL,
                    self._config.SUPABASE_ANON_KEY.get_secret_value(),
                )
                self._logger.info("Supabase storage client initialized.")
            except (ValueError, TypeError) as exc:
                self._logger.warning(
                    "Supabase credential format error: %s. Uploads disabled.", exc,
                )
        return self._client

    @staticmethod
    def owner_segment(patient_id: Optional[str], patient_name: str) -> str:
        """Owner folder: the patient id, or the slugified patient name."""
        return patient_id or slugify_owner(patient_name)

    def build_path(
        self,
        scope: str,
        clinic_id: str,
        owner_id: str,
        file_name: str,
    ) -> str:
        stamp = now_utc().strftime("%Y%m%d%H%M%S%f")
        return f"{scope}/{clinic_id}/{owner_id}/{stamp}_{sanitize_file_name(file_name)}"

    def upload(
        self,
        *,
        scope: str,
        clinic_id: Optional[str],
        owner_id: str,
        file_name: str,
        content: bytes,
        mime: Optional[str] = None,
    ) -> Optional[StoredFile]:
        """Upload *content* and return its path and signed URL.

        Returns ``None`` (after logging) when storage is not configured,
        the clinic is missing, or the storage call fails.
        """
        if not clinic_id:
            self._logger.warning("Upload of '%s' skipped: no clinic on record.", file_name)
            return None
        client = self._get_client()
        if client is None:
            self._logger.info("Storage not configured; '%s' stays local.", file_name)
            return None

        path = self.build_path(scope, clinic_id, owner_id, file_name)
        bucket = client.storage.from_(self._config.STORAGE_BUCKET)
        try:
            bucket.upload(
                path,
                content,
                {
                    "content-type": mime or "application/octet-stream",
                    "cache-control": str(self._config.STORAGE_CACHE_CONTROL_S),
                    "upsert": "false",
                },
            )
            signed = bucket.create_signed_url(path, self._config.SIGNED_URL_TTL_S)
        except Exception as exc:
            self._logger.warning("Upload of '%s' failed: %s", path, exc, exc_info=True)
            return None

        url = signed.get("signedURL") or signed.get("signedUrl")
        if not url:
            self._logger.warning("Signed URL missing for '%s'.", path)
            return None
        self._logger.info("Uploaded attachment to %s", path)
        return StoredFile(path=path, url=url)
