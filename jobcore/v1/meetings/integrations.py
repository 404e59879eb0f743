"""
Clients for the systems the pipeline talks to.

Each collaborator is a Protocol so handlers can be exercised with fakes;
the httpx implementations below are what the worker wires in.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from jobcore.config.settings import Settings
from jobcore.v1.infra.jobs.errors import PermanentJobError, TransientJobError

logger = logging.getLogger(__name__)


class ArtifactsNotReady(TransientJobError):
    """The meeting platform has not published the call record or artifacts yet."""


@dataclass(frozen=True)
class MeetingArtifacts:
    recording_url: str | None = None
    transcript_url: str | None = None
    transcript_content: str | None = None
    call_started_at: datetime | None = None
    call_ended_at: datetime | None = None


class ArtifactClient(Protocol):
    async def fetch_artifacts(
        self,
        online_meeting_id: str,
        organizer_id: str | None,
        call_record_id: str | None,
    ) -> MeetingArtifacts: ...


class MinutesGenerator(Protocol):
    async def generate(self, meeting: dict[str, Any]) -> dict[str, Any]:
        """Return ``{"summary": str, "content": dict}`` for the meeting."""
        ...


class EmailSender(Protocol):
    async def send_minutes(self, minutes: dict[str, Any]) -> None: ...


class ArchiveUploader(Protocol):
    async def upload(self, minutes: dict[str, Any]) -> str:
        """Archive the minutes and return the archived document URL."""
        ...


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class GraphArtifactClient:
    """Fetches recordings, transcripts and call records from the meeting platform."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        headers = {}
        if settings.graph_token:
            headers["Authorization"] = f"Bearer {settings.graph_token}"
        self.client = client or httpx.AsyncClient(
            base_url=settings.graph_base_url.rstrip("/"),
            timeout=settings.http_timeout_s,
            headers=headers,
        )

    async def _get(self, path: str, **kwargs: Any) -> httpx.Response:
        response = await self.client.get(path, **kwargs)
        if response.status_code == 404:
            raise ArtifactsNotReady(f"Not ready yet (404): {path}")
        if response.status_code == 202:
            raise ArtifactsNotReady(f"Still processing (202): {path}")
        response.raise_for_status()
        return response

    async def fetch_artifacts(
        self,
        online_meeting_id: str,
        organizer_id: str | None,
        call_record_id: str | None,
    ) -> MeetingArtifacts:
        if not organizer_id:
            raise PermanentJobError(
                f"Cannot fetch transcripts: organizer id not available for {online_meeting_id}"
            )

        meeting_path = f"/users/{organizer_id}/onlineMeetings/{quote(online_meeting_id, safe='')}"

        recordings = (await self._get(f"{meeting_path}/recordings")).json().get("value", [])
        transcripts = (await self._get(f"{meeting_path}/transcripts")).json().get("value", [])

        latest_recording = recordings[-1] if recordings else None
        latest_transcript = transcripts[-1] if transcripts else None

        transcript_content = None
        if latest_transcript:
            content_response = await self._get(
                f"{meeting_path}/transcripts/{latest_transcript['id']}/content",
                params={"$format": "text/vtt"},
            )
            transcript_content = content_response.text

        started_at = ended_at = None
        if call_record_id:
            call_record = (
                await self._get(f"/communications/callRecords/{call_record_id}")
            ).json()
            started_at = _parse_timestamp(call_record.get("startDateTime"))
            ended_at = _parse_timestamp(call_record.get("endDateTime"))

        logger.info(
            "Fetched meeting artifacts",
            extra={
                "online_meeting_id": online_meeting_id,
                "recording": latest_recording is not None,
                "transcript": latest_transcript is not None,
            },
        )
        return MeetingArtifacts(
            recording_url=(latest_recording or {}).get("recordingContentUrl"),
            transcript_url=(latest_transcript or {}).get("transcriptContentUrl"),
            transcript_content=transcript_content,
            call_started_at=started_at,
            call_ended_at=ended_at,
        )

    async def aclose(self) -> None:
        await self.client.aclose()


class ServiceEndpointClient:
    """HTTP client for the minutes generation, email and archive services."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self.client = client or httpx.AsyncClient(
            base_url=settings.services_base_url.rstrip("/"),
            timeout=settings.http_timeout_s,
        )

    async def _post(self, path: str, json: dict[str, Any]) -> dict[str, Any]:
        response = await self.client.post(path, json=json)
        response.raise_for_status()
        if not response.content:
            return {}
        return response.json()

    async def generate(self, meeting: dict[str, Any]) -> dict[str, Any]:
        return await self._post("/minutes/generate", meeting)

    async def send_minutes(self, minutes: dict[str, Any]) -> None:
        await self._post("/email/send", minutes)

    async def upload(self, minutes: dict[str, Any]) -> str:
        data = await self._post("/archive/upload", minutes)
        url = data.get("url")
        if not url:
            raise TransientJobError("Archive service did not return a document URL")
        return url

    async def aclose(self) -> None:
        await self.client.aclose()
