# backend/ranker/adapters/idp.py
"""
Document-extraction provider (IDP) adapters.

Contract (both implementations return the same shapes):
  process_job(external_ref, jd_folder, resume_folder) -> IdpJobTicket
  get_extractions(request_id)                         -> list[RawExtraction] (handed out once)
  extract_document(content, doc_type, mime_type)      -> dict (one document)

- FixtureIdpAdapter: embedded sample data, simulated latency, in-memory results.
- RemoteIdpAdapter:  authenticated HTTP calls; job results come back through
  the /api/idp/callback webhook, so get_extractions is not supported.

create_idp_adapter(settings) picks one from Settings.parser.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from ..core.config import Settings
from ..core.errors import ConfigError, ProviderError
from ..core.utils import content_hash
from ..pipeline.normalizer import DocType, RawExtraction
from .fixtures import FIXTURE_JD, FIXTURE_RESUMES

logger = logging.getLogger(__name__)


class IdpJobTicket(BaseModel):
    request_id: str
    status: str


class IdpAdapter(ABC):
    name: str = "idp"

    @abstractmethod
    async def process_job(self, external_ref: str, jd_folder: str, resume_folder: str) -> IdpJobTicket:
        ...

    @abstractmethod
    async def get_extractions(self, request_id: str) -> List[RawExtraction]:
        ...

    @abstractmethod
    async def extract_document(self, content: bytes, doc_type: DocType, mime_type: str = "application/pdf") -> Dict[str, Any]:
        ...

    async def aclose(self) -> None:
        return None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------- fixtures ----------

class FixtureIdpAdapter(IdpAdapter):
    name = "fixture"

    def __init__(self, delay_seconds: float = 1.0):
        self.delay_seconds = max(0.0, delay_seconds)
        self._results: Dict[str, List[RawExtraction]] = {}

    async def process_job(self, external_ref: str, jd_folder: str, resume_folder: str) -> IdpJobTicket:
        request_id = f"fixture_{external_ref}_{int(time.time() * 1000)}"
        logger.info("fixture IDP processing %s (jd=%s, resumes=%s)", external_ref, jd_folder, resume_folder)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        created = _now_iso()
        items = [RawExtraction(
            job_key=external_ref,
            item_id=f"{external_ref}_jd",
            extraction_json=json.dumps(FIXTURE_JD),
            created_at=created,
        )]
        for i, resume in enumerate(FIXTURE_RESUMES):
            items.append(RawExtraction(
                job_key=external_ref,
                item_id=f"{external_ref}_resume_{i}",
                extraction_json=json.dumps(resume),
                created_at=created,
            ))
        self._results[request_id] = items
        logger.info("fixture IDP completed %s: %d extractions", request_id, len(items))
        return IdpJobTicket(request_id=request_id, status="COMPLETED")

    async def get_extractions(self, request_id: str) -> List[RawExtraction]:
        return self._results.pop(request_id, [])

    async def extract_document(self, content: bytes, doc_type: DocType, mime_type: str = "application/pdf") -> Dict[str, Any]:
        if self.delay_seconds:
            await asyncio.sleep(min(self.delay_seconds, 0.5))
        if DocType(doc_type) == DocType.JD:
            return copy.deepcopy(FIXTURE_JD)
        # same bytes always map to the same sample resume
        idx = int(content_hash(content or b"")[:8], 16) % len(FIXTURE_RESUMES)
        return copy.deepcopy(FIXTURE_RESUMES[idx])


# ---------- remote ----------

class RemoteIdpAdapter(IdpAdapter):
    name = "remote"

    def __init__(
        self,
        start_url: str,
        api_key: str,
        base_url: str = "",
        timeout_seconds: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.start_url = start_url
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    def _headers(self, content_type: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": content_type, "Accept": "application/json"}

    async def _post(self, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.post(url, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError(f"IDP request to {url} failed: {e}") from e
        if response.status_code // 100 != 2:
            raise ProviderError(
                f"IDP request to {url} returned {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"IDP response from {url} is not JSON") from e

    async def process_job(self, external_ref: str, jd_folder: str, resume_folder: str) -> IdpJobTicket:
        request_id = f"idp_{external_ref}_{uuid.uuid4().hex[:12]}"
        logger.info("remote IDP processing %s via %s", external_ref, self.start_url)
        body = await self._post(
            self.start_url,
            headers=self._headers("application/json"),
            json={
                "externalJobRef": external_ref,
                "jdFolderPath": jd_folder,
                "resumeFolderPath": resume_folder,
                "requestId": request_id,
            },
        )
        body = body if isinstance(body, dict) else {}
        return IdpJobTicket(
            request_id=str(body.get("requestId") or request_id),
            status=str(body.get("status") or "PROCESSING"),
        )

    async def get_extractions(self, request_id: str) -> List[RawExtraction]:
        raise ProviderError("remote IDP delivers extractions through the callback webhook; polling is not supported")

    async def extract_document(self, content: bytes, doc_type: DocType, mime_type: str = "application/pdf") -> Dict[str, Any]:
        if not self.base_url:
            raise ProviderError("IDP base URL is not configured for single-document extraction")
        body = await self._post(
            f"{self.base_url}/extract",
            headers=self._headers(mime_type or "application/pdf"),
            content=content,
        )
        if not isinstance(body, dict):
            raise ProviderError("IDP extraction response is not a JSON object")
        return body

    async def aclose(self) -> None:
        await self._client.aclose()


# ---------- factory ----------

def create_idp_adapter(settings: Settings) -> IdpAdapter:
    parser = (settings.parser or "fixture").lower()
    if parser in ("fixture", "mock"):
        return FixtureIdpAdapter(delay_seconds=settings.fixture_delay_seconds)
    if parser in ("remote", "mule"):
        if not settings.idp_start_url or not settings.idp_api_key:
            raise ConfigError("IDP_START_URL and IDP_API_KEY must be set for the remote IDP adapter")
        return RemoteIdpAdapter(
            start_url=settings.idp_start_url,
            api_key=settings.idp_api_key,
            base_url=settings.idp_base_url,
            timeout_seconds=settings.idp_timeout_seconds,
        )
    raise ConfigError(f"Unknown PARSER: {settings.parser}")


__all__ = ["IdpJobTicket", "IdpAdapter", "FixtureIdpAdapter", "RemoteIdpAdapter", "create_idp_adapter"]
