"""Therapist profile store adapters.

The schema lives in an external row store (Supabase/PostgREST). This module
only reads and inserts rows, and stores the recorded style samples next to
them (Supabase Storage) with their public URLs on the row. Without Supabase settings an in-memory store is
used, which is what the tests and local development run against.
"""
from __future__ import annotations

import logging
import threading
import uuid
from typing import Optional, Protocol

import requests

from .config import ServerSettings
from .errors import NotFoundError, UpstreamError
from .profiles import Scenario, TherapistProfile
from .stt import audio_extension

logger = logging.getLogger("companion_ai.store")


class TherapistStore(Protocol):
    def get(self, therapist_id: str) -> Optional[TherapistProfile]: ...

    def create(self, profile: TherapistProfile) -> TherapistProfile: ...

    def upload_audio(
        self, therapist_id: str, scenario: Scenario, data: bytes, content_type: Optional[str] = None
    ) -> str: ...


def audio_path(therapist_id: str, scenario: Scenario, content_type: Optional[str] = None) -> str:
    return f"{therapist_id}/{scenario.value}.{audio_extension(content_type)}"


class InMemoryTherapistStore:
    def __init__(self) -> None:
        self._rows: dict[str, dict] = {}
        self.objects: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, therapist_id: str) -> Optional[TherapistProfile]:
        with self._lock:
            row = self._rows.get(therapist_id)
        return TherapistProfile.from_row(row) if row is not None else None

    def create(self, profile: TherapistProfile) -> TherapistProfile:
        row = profile.to_row()
        row["id"] = profile.id or str(uuid.uuid4())
        with self._lock:
            self._rows[row["id"]] = row
        return TherapistProfile.from_row(row)

    def upload_audio(
        self, therapist_id: str, scenario: Scenario, data: bytes, content_type: Optional[str] = None
    ) -> str:
        path = audio_path(therapist_id, scenario, content_type)
        url = f"memory://therapist-audio/{path}"
        with self._lock:
            row = self._rows.get(therapist_id)
            if row is None:
                raise NotFoundError("Therapist not found")
            self.objects[path] = data
            row[f"voice_{scenario.value}"] = url
        return url

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)


class SupabaseTherapistStore:
    """Talks to the Supabase REST (PostgREST) and Storage endpoints with plain HTTP."""

    def __init__(
        self,
        url: str,
        key: str,
        *,
        table: str = "therapists",
        bucket: str = "therapist-audio",
        timeout: float = 10.0,
    ):
        self.base_url = f"{url.rstrip('/')}/rest/v1/{table}"
        self.storage_url = f"{url.rstrip('/')}/storage/v1/object"
        self.bucket = bucket
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(
            {
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            }
        )

    def get(self, therapist_id: str) -> Optional[TherapistProfile]:
        try:
            r = self.session.get(
                self.base_url,
                params={"id": f"eq.{therapist_id}", "select": "*"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Profile lookup failed: {e}", service="store") from e
        # PostgREST answers 400 for ids that are not valid uuids
        if r.status_code == 400:
            logger.info("[store] rejected id %r: %s", therapist_id, r.text)
            return None
        if not r.ok:
            logger.error("[store] lookup status=%s text=%s", r.status_code, r.text)
            raise UpstreamError("Profile lookup failed", service="store")
        rows = r.json()
        if not rows:
            return None
        return TherapistProfile.from_row(rows[0])

    def create(self, profile: TherapistProfile) -> TherapistProfile:
        try:
            r = self.session.post(
                self.base_url,
                json=profile.to_row(),
                headers={"Prefer": "return=representation"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Profile insert failed: {e}", service="store") from e
        if not r.ok:
            logger.error("[store] insert status=%s text=%s", r.status_code, r.text)
            raise UpstreamError("Profile insert failed", service="store")
        rows = r.json()
        return TherapistProfile.from_row(rows[0] if isinstance(rows, list) else rows)

    def upload_audio(
        self, therapist_id: str, scenario: Scenario, data: bytes, content_type: Optional[str] = None
    ) -> str:
        path = audio_path(therapist_id, scenario, content_type)
        try:
            r = self.session.post(
                f"{self.storage_url}/{self.bucket}/{path}",
                data=data,
                headers={"Content-Type": content_type or "audio/webm", "x-upsert": "true"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Audio upload failed: {e}", service="store") from e
        if not r.ok:
            logger.error("[store] upload %s status=%s text=%s", path, r.status_code, r.text)
            raise UpstreamError("Audio upload failed", service="store")

        url = f"{self.storage_url}/public/{self.bucket}/{path}"
        try:
            r = self.session.patch(
                self.base_url,
                params={"id": f"eq.{therapist_id}"},
                json={f"voice_{scenario.value}": url},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Profile update failed: {e}", service="store") from e
        if not r.ok:
            logger.error("[store] update status=%s text=%s", r.status_code, r.text)
            raise UpstreamError("Profile update failed", service="store")
        logger.info("[store] stored %s (%d bytes)", path, len(data))
        return url


def build_store(settings: ServerSettings) -> TherapistStore:
    if settings.store_backend == "supabase":
        logger.info("Using Supabase profile store: %s", settings.supabase_url)
        return SupabaseTherapistStore(
            settings.supabase_url,
            settings.supabase_key,
            table=settings.supabase_table,
            bucket=settings.supabase_bucket,
            timeout=settings.upstream_timeout_seconds,
        )
    logger.info("Using in-memory profile store")
    return InMemoryTherapistStore()
