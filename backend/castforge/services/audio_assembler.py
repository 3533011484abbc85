"""
Audio assembly with ffmpeg: clip a sub-range, merge intro/main/outro.

Both operations stream-copy (-c copy), so audio is never re-encoded.
Each operation works in its own directory under temp_dir and removes
it afterwards, success or failure. Inputs that are already local (our
own storage, or caller paths) are used in place and never deleted.
"""

import asyncio
import logging
import shutil
import subprocess
import uuid
from pathlib import Path
from typing import Callable
from urllib.parse import urlparse

import httpx

from castforge.config import Settings
from castforge.services.ai_clients.base import AIClientConnectionError, AIClientTimeoutError, error_from_status
from castforge.services.errors import InvalidInput
from castforge.services.storage import ObjectStorage
from castforge.utils.media_utils import audio_suffix

logger = logging.getLogger(__name__)

FfmpegRunner = Callable[[list[str]], None]

AUDIO_CONTENT_TYPES = {
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".opus": "audio/opus",
    ".webm": "audio/webm",
    ".flac": "audio/flac",
}


def run_ffmpeg(args: list[str]) -> None:
    """
    Run ffmpeg with the given arguments.

    Raises:
        RuntimeError: If ffmpeg returns non-zero exit code
    """
    result = subprocess.run(
        ["ffmpeg", "-hide_banner", "-loglevel", "error", "-y", *args],
        capture_output=True,
        text=True,
        timeout=600,  # 10 min timeout
    )
    if result.returncode != 0:
        logger.error(f"ffmpeg failed: {result.stderr[:500]}")
        raise RuntimeError(f"ffmpeg error (code {result.returncode})")


def content_type_for(path: Path) -> str:
    return AUDIO_CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream")


class AudioAssembler:
    """
    Clip and merge audio assets.

    Example:
        assembler = AudioAssembler.from_settings(settings, storage)
        url, key = await assembler.clip(episode_url, offset=12, duration=19,
                                        key_prefix="highlights/abc")
        url, key = await assembler.merge(intro_url, main_url, outro_url,
                                         key_prefix="episodes/task123/full")
    """

    def __init__(
        self,
        storage: ObjectStorage,
        temp_dir: Path,
        http_client: httpx.AsyncClient | None = None,
        runner: FfmpegRunner = run_ffmpeg,
    ):
        """
        Initialize assembler.

        Args:
            storage: Object storage receiving results
            temp_dir: Parent directory for per-operation work directories
            http_client: Client used to fetch remote inputs
            runner: ffmpeg runner (blocking; called in a thread)
        """
        self.storage = storage
        self.temp_dir = Path(temp_dir)
        self.http_client = http_client or httpx.AsyncClient(timeout=300.0, follow_redirects=True)
        self.runner = runner

    @classmethod
    def from_settings(cls, settings: Settings, storage: ObjectStorage) -> "AudioAssembler":
        return cls(storage, settings.temp_dir)

    async def close(self) -> None:
        await self.http_client.aclose()

    # ═══════════════════════════════════════════════════════════════════════════
    # Operations
    # ═══════════════════════════════════════════════════════════════════════════

    async def clip(
        self,
        source_url: str,
        offset: float,
        duration: float,
        key_prefix: str,
    ) -> tuple[str, str]:
        """
        Cut [offset, offset + duration) out of an audio asset and store it.

        Args:
            source_url: Source audio URL or local path
            offset: Start in seconds
            duration: Length in seconds
            key_prefix: Storage key without extension

        Returns:
            Tuple of (url, storage_key)

        Raises:
            InvalidInput: If offset or duration is out of range
            RuntimeError: If ffmpeg fails
        """
        if offset < 0 or duration <= 0:
            raise InvalidInput(f"Invalid clip window: offset={offset}, duration={duration}")

        work_dir = self._new_work_dir("clip")
        try:
            source = await self._materialize(source_url, work_dir)
            output = work_dir / f"clip{source.suffix or '.mp3'}"

            logger.info(f"Clipping {source.name}: {offset:g}s +{duration:g}s")
            await asyncio.to_thread(
                self.runner,
                ["-ss", f"{offset:g}", "-i", str(source), "-t", f"{duration:g}", "-c", "copy", str(output)],
            )
            if not output.exists():
                raise RuntimeError("Clip failed: output file not created")

            key = f"{key_prefix}{output.suffix}"
            url = await self.storage.put_file(key, output, content_type_for(output))
            return url, key
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    async def merge(
        self,
        intro_url: str | None,
        main_url: str | None,
        outro_url: str | None,
        key_prefix: str,
    ) -> tuple[str, str]:
        """
        Concatenate intro -> main -> outro and store the result.

        A single present input is materialized and stored as is, without
        running ffmpeg.

        Args:
            intro_url: Intro audio (optional)
            main_url: Main audio (optional)
            outro_url: Outro audio (optional)
            key_prefix: Storage key without extension

        Returns:
            Tuple of (url, storage_key)

        Raises:
            InvalidInput: If no input is present
            RuntimeError: If ffmpeg fails
        """
        sources = [url for url in (intro_url, main_url, outro_url) if url]
        if not sources:
            raise InvalidInput("No audio segments to merge")

        work_dir = self._new_work_dir("merge")
        try:
            local_paths = [await self._materialize(url, work_dir) for url in sources]

            if len(local_paths) == 1:
                only = local_paths[0]
                logger.info(f"Single audio segment, storing without concatenation: {only.name}")
                key = f"{key_prefix}{only.suffix or '.mp3'}"
                url = await self.storage.put_file(key, only, content_type_for(only))
                return url, key

            suffix = local_paths[0].suffix or ".mp3"
            list_file = work_dir / "concat.txt"
            list_file.write_text(
                "\n".join(f"file '{_escape_concat_path(p)}'" for p in local_paths) + "\n",
                encoding="utf-8",
            )
            output = work_dir / f"merged{suffix}"

            logger.info(f"Merging {len(local_paths)} audio segments with ffmpeg")
            await asyncio.to_thread(
                self.runner,
                ["-f", "concat", "-safe", "0", "-i", str(list_file), "-c", "copy", str(output)],
            )
            if not output.exists():
                raise RuntimeError("Merge failed: output file not created")

            key = f"{key_prefix}{suffix}"
            url = await self.storage.put_file(key, output, content_type_for(output))
            logger.info(f"Merged audio stored: {key} ({output.stat().st_size / 1024:.0f} KB)")
            return url, key
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    # ═══════════════════════════════════════════════════════════════════════════
    # Inputs
    # ═══════════════════════════════════════════════════════════════════════════

    def _new_work_dir(self, operation: str) -> Path:
        work_dir = self.temp_dir / f"{operation}-{uuid.uuid4().hex[:12]}"
        work_dir.mkdir(parents=True, exist_ok=True)
        return work_dir

    async def _materialize(self, source: str, work_dir: Path) -> Path:
        """
        Local path for an input, downloading into work_dir only when needed.

        Local files are returned in place; they belong to the caller.
        """
        local = self.storage.local_path_for(source)
        if local is not None:
            return local

        parsed = urlparse(source)
        if parsed.scheme in ("", "file"):
            path = Path(parsed.path if parsed.scheme == "file" else source)
            if not path.exists():
                raise FileNotFoundError(f"Audio file not found: {path}")
            return path

        target = work_dir / f"input-{uuid.uuid4().hex[:8]}{audio_suffix(source)}"
        await self._download(source, target)
        return target

    async def _download(self, url: str, target: Path) -> None:
        logger.debug(f"Downloading audio: {url}")
        try:
            async with self.http_client.stream("GET", url) as response:
                response.raise_for_status()
                with open(target, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
        except httpx.TimeoutException as e:
            raise AIClientTimeoutError("Audio download timeout", provider="download", original_error=e) from e
        except httpx.HTTPStatusError as e:
            raise error_from_status(
                e.response.status_code,
                f"Audio download failed: HTTP {e.response.status_code}",
                provider="download",
                original_error=e,
            ) from e
        except httpx.TransportError as e:
            raise AIClientConnectionError(
                f"Audio download failed: {e}", provider="download", original_error=e,
            ) from e


def _escape_concat_path(path: Path) -> str:
    """Quote a path for the ffmpeg concat demuxer."""
    return str(path.resolve()).replace("'", "'\\''")
