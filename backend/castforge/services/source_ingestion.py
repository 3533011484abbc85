"""
Source ingestion: turn a submitted input into transcript text.

- video-url: yt-dlp downloads the best audio stream, the audio is kept
  in object storage and transcribed by Whisper through the adapter
- article-url: the page is fetched with httpx and reduced to readable
  text with BeautifulSoup
- raw-text: used verbatim
"""

import asyncio
import logging
import re
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup
from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError, ExtractorError

from castforge.config import Settings
from castforge.models.schemas import InputDescriptor, InputKind, VideoInfo
from castforge.services.ai_clients import (
    AIClientConnectionError,
    AIClientResponseError,
    ProviderServerError,
    WhisperClient,
)
from castforge.services.ai_clients.http_utils import send_request
from castforge.services.errors import InvalidInput, SourceUnavailable
from castforge.services.pipeline.service_adapter import Candidate, ExternalServiceAdapter
from castforge.services.storage import ObjectStorage
from castforge.utils.media_utils import audio_suffix

logger = logging.getLogger(__name__)

_YOUTUBE_URL_RE = re.compile(
    r"(?:youtube\.com/(?:watch\?(?:[^#]*&)?v=|shorts/|embed/|live/)|youtu\.be/)"
    r"(?P<id>[A-Za-z0-9_-]{11})(?![A-Za-z0-9_-])"
)

# yt-dlp error texts that mean the source itself cannot be used
_UNAVAILABLE_MARKERS = (
    "private video",
    "video unavailable",
    "this video is not available",
    "has been removed",
    "removed by the uploader",
    "account associated with this video has been terminated",
    "not available in your country",
    "geo restricted",
    "members-only",
    "sign in to confirm your age",
)

_ARTICLE_NOISE_TAGS = ["script", "style", "noscript", "nav", "header", "footer", "aside", "form"]

_USER_AGENT = "Mozilla/5.0 (compatible; CastForge/0.1; +https://github.com/castforge)"


@dataclass
class SourceContent:
    """
    Ingested source ready for analysis.

    Attributes:
        transcript: Source text (transcript, article text or raw text)
        title: Source title when known
        language: Detected language code (video only)
        duration: Source duration in seconds (video only)
        audio_url: Stored source audio (video only)
        audio_key: Storage key of the source audio
    """

    transcript: str
    title: str | None = None
    language: str | None = None
    duration: float | None = None
    audio_url: str | None = None
    audio_key: str | None = None


@dataclass
class DownloadedAudio:
    """Result of a yt-dlp audio download."""

    path: Path
    title: str | None
    duration: float | None


def extract_video_id(url: str) -> str | None:
    """
    Extract the 11-character YouTube video id.

    Supports watch, shorts, embed, live and youtu.be URLs.

    Example:
        >>> extract_video_id("https://youtu.be/dQw4w9WgXcQ?t=42")
        'dQw4w9WgXcQ'
    """
    if not url:
        return None
    match = _YOUTUBE_URL_RE.search(url)
    return match.group("id") if match else None


def validate_input(kind: InputKind, payload: str) -> str:
    """
    Check a submission before any Task is created.

    Args:
        kind: Input kind
        payload: URL or text

    Returns:
        Normalized payload (stripped)

    Raises:
        InvalidInput: If the payload does not fit its kind
    """
    payload = (payload or "").strip()
    if not payload:
        raise InvalidInput("Input must not be empty")

    if kind is InputKind.VIDEO_URL:
        if extract_video_id(payload) is None:
            raise InvalidInput("Not a valid YouTube URL")
    elif kind is InputKind.ARTICLE_URL:
        parsed = urlparse(payload)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidInput("Article URL must be an absolute http(s) URL")

    return payload


def download_audio(url: str, target_dir: Path, max_duration: int) -> DownloadedAudio:
    """
    Download the best audio stream of a video with yt-dlp.

    Blocking; run it in a thread.

    Args:
        url: Video URL
        target_dir: Directory for the downloaded file
        max_duration: Longest accepted source in seconds

    Returns:
        DownloadedAudio with local path, title and duration

    Raises:
        SourceUnavailable: Private, removed, region-locked or too long
        AIClientConnectionError: Download failed for another reason
    """
    options = {
        "quiet": True,
        "no_warnings": True,
        "noplaylist": True,
        "format": "bestaudio/best",
        "outtmpl": str(target_dir / "%(id)s.%(ext)s"),
    }

    try:
        with YoutubeDL(options) as ydl:
            info = ydl.extract_info(url, download=False)
            duration = info.get("duration")
            _check_duration(duration, max_duration)

            info = ydl.process_ie_result(info, download=True)
            downloads = info.get("requested_downloads") or []
            filepath = downloads[0].get("filepath") if downloads else None
            path = Path(filepath or ydl.prepare_filename(info))

    except (DownloadError, ExtractorError) as e:
        raise _download_error(e) from e

    if not path.exists():
        raise AIClientConnectionError("yt-dlp finished without an output file", provider="youtube")

    logger.info(f"Downloaded audio: {path.name} ({path.stat().st_size / 1024 / 1024:.1f} MB)")
    return DownloadedAudio(path=path, title=info.get("title"), duration=duration)


def fetch_video_info(url: str, max_duration: int) -> VideoInfo:
    """
    Read video metadata with yt-dlp without downloading anything.

    Blocking; run it in a thread.

    Raises:
        SourceUnavailable: Private, removed, region-locked or too long
        AIClientConnectionError: Metadata lookup failed for another reason
    """
    options = {"quiet": True, "no_warnings": True, "noplaylist": True, "skip_download": True}

    try:
        with YoutubeDL(options) as ydl:
            info = ydl.extract_info(url, download=False)
    except (DownloadError, ExtractorError) as e:
        raise _download_error(e) from e

    duration = info.get("duration")
    _check_duration(duration, max_duration)

    return VideoInfo(
        video_id=info.get("id") or extract_video_id(url) or "",
        title=info.get("title"),
        duration=duration,
        thumbnail_url=info.get("thumbnail"),
        channel=info.get("channel") or info.get("uploader"),
    )


def _check_duration(duration: float | None, max_duration: int) -> None:
    if duration and duration > max_duration:
        raise SourceUnavailable(
            f"Video is too long ({duration / 60:.0f} min, limit {max_duration / 60:.0f} min)"
        )


def _download_error(error: Exception) -> Exception:
    text = str(error).lower()
    if any(marker in text for marker in _UNAVAILABLE_MARKERS):
        return SourceUnavailable("This video is private, removed or not available in this region")
    return AIClientConnectionError(f"Video download failed: {error}", provider="youtube", original_error=error)


def extract_article_text(html: str) -> tuple[str | None, str]:
    """
    Reduce an HTML page to its title and readable text.

    Prefers <article>; falls back to all paragraphs, then to the page text.

    Returns:
        Tuple of (title, text)
    """
    soup = BeautifulSoup(html, "html.parser")

    title = None
    og_title = soup.find("meta", attrs={"property": "og:title"})
    if og_title and og_title.get("content"):
        title = og_title["content"].strip()
    elif soup.title and soup.title.string:
        title = soup.title.string.strip()

    for tag in soup(_ARTICLE_NOISE_TAGS):
        tag.decompose()

    container = soup.find("article") or soup.body or soup
    paragraphs = [p.get_text(" ", strip=True) for p in container.find_all("p")]
    text = "\n\n".join(p for p in paragraphs if p)
    if not text:
        text = container.get_text("\n", strip=True)

    return title or None, text


class SourceIngestion:
    """
    Ingest video, article and raw-text sources.

    Example:
        ingestion = SourceIngestion.from_settings(settings, storage)
        content = await ingestion.ingest(task.id, task.input)
        print(content.transcript[:200])
    """

    def __init__(
        self,
        settings: Settings,
        storage: ObjectStorage,
        whisper: WhisperClient | None = None,
        transcription_adapter: ExternalServiceAdapter | None = None,
        http_client: httpx.AsyncClient | None = None,
        downloader=download_audio,
        info_fetcher=fetch_video_info,
    ):
        """
        Initialize ingestion.

        Args:
            settings: Application settings
            storage: Object storage for source audio
            whisper: Whisper client (required for video sources)
            transcription_adapter: Adapter over transcription candidates
            http_client: HTTP client for article fetching
            downloader: Blocking (url, target_dir, max_duration) -> DownloadedAudio
            info_fetcher: Blocking (url, max_duration) -> VideoInfo
        """
        self.settings = settings
        self.storage = storage
        self.whisper = whisper
        self.transcription_adapter = transcription_adapter
        self.http_client = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout,
            follow_redirects=True,
            headers={"User-Agent": _USER_AGENT},
        )
        self.downloader = downloader
        self.info_fetcher = info_fetcher

    @classmethod
    def from_settings(cls, settings: Settings, storage: ObjectStorage) -> "SourceIngestion":
        return cls(
            settings,
            storage,
            whisper=WhisperClient.from_settings(settings),
            transcription_adapter=ExternalServiceAdapter.from_settings("transcription", settings),
        )

    async def close(self) -> None:
        await self.http_client.aclose()
        if self.whisper is not None:
            await self.whisper.close()

    async def video_info(self, url: str) -> VideoInfo:
        """
        Preview a video URL before it is submitted.

        Raises:
            InvalidInput: Not a YouTube URL
            SourceUnavailable: Video cannot be used or is too long
        """
        url = validate_input(InputKind.VIDEO_URL, url)
        info = await asyncio.to_thread(self.info_fetcher, url, self.settings.max_source_duration)
        logger.info(f"Video info for {info.video_id}: {info.title!r}, {info.duration or 0:.0f}s")
        return info

    async def ingest(self, task_id: str, source: InputDescriptor) -> SourceContent:
        """
        Ingest one submitted source.

        Args:
            task_id: Owning Task (for storage keys and logs)
            source: Persisted input descriptor

        Returns:
            SourceContent

        Raises:
            InvalidInput: Payload does not fit its kind
            SourceUnavailable: Source cannot be used
            CandidatesExhausted: Transcription failed on every candidate
        """
        payload = validate_input(source.kind, source.payload)

        if source.kind is InputKind.VIDEO_URL:
            return await self.ingest_video(task_id, payload)
        if source.kind is InputKind.ARTICLE_URL:
            return await self.ingest_article(payload)
        return SourceContent(transcript=payload)

    async def ingest_video(self, task_id: str, url: str) -> SourceContent:
        """Download, store and transcribe a video's audio."""
        if self.whisper is None or self.transcription_adapter is None:
            raise RuntimeError("Video ingestion needs a Whisper client and transcription adapter")

        video_id = extract_video_id(url)
        work_dir = self.settings.temp_dir / f"source-{task_id}-{uuid.uuid4().hex[:8]}"
        work_dir.mkdir(parents=True, exist_ok=True)

        try:
            downloaded = await asyncio.to_thread(
                self.downloader, url, work_dir, self.settings.max_source_duration
            )

            key = f"sources/{task_id}/{video_id}{audio_suffix(str(downloaded.path))}"
            audio_url = await self.storage.put_file(key, downloaded.path, "audio/mpeg")

            async def transcribe(candidate: Candidate) -> dict:
                return await self.whisper.transcribe(
                    downloaded.path,
                    language=candidate.params.get("language"),
                    model=candidate.name,
                )

            result = await self.transcription_adapter.call(
                transcribe, context={"task_id": task_id, "stage": "transcribing"}
            )
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        transcript = (result.get("text") or "").strip()
        if not transcript:
            raise SourceUnavailable("No speech could be recognized in this video")

        duration = result.get("duration") or downloaded.duration
        logger.info(
            f"Video {video_id} ingested: {len(transcript)} chars, "
            f"language={result.get('language')}, duration={duration}"
        )
        return SourceContent(
            transcript=transcript,
            title=downloaded.title,
            language=result.get("language"),
            duration=float(duration) if duration else None,
            audio_url=audio_url,
            audio_key=key,
        )

    async def ingest_article(self, url: str) -> SourceContent:
        """Fetch an article and extract its readable text."""
        try:
            response = await send_request(self.http_client, "GET", url, provider="article")
        except ProviderServerError:
            raise
        except AIClientResponseError as e:
            raise SourceUnavailable(f"The article could not be fetched (HTTP {e.status_code})") from e

        title, text = extract_article_text(response.text)
        if not text.strip():
            raise SourceUnavailable("No readable text found at this URL")

        if len(text) > self.settings.max_article_chars:
            logger.info(f"Article truncated from {len(text)} to {self.settings.max_article_chars} chars")
            text = text[: self.settings.max_article_chars]

        logger.info(f"Article ingested: {len(text)} chars, title={title!r}")
        return SourceContent(transcript=text, title=title)
