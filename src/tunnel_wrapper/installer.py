"""Download and installation of tunnel artifacts.

An artifact is either a single executable written as-is, or a zip/tar
archive unpacked into the install directory. Installation is skipped when
the expected file already exists; no checksum is verified.
"""

import asyncio
import io
import stat
import tarfile
import zipfile
from pathlib import Path

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common.events import DownloadProgressEvent, EventChannel, EventType, PostDownloadEvent
from .common.exceptions import DownloadFailedError, ExtractFailedError, InstallError
from .common.http import create_client, is_success
from .common.logging import get_logger

logger = get_logger(__name__)


class DownloadDescriptor(BaseModel):
    """One artifact download attempt."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    url: str = Field(min_length=1, description="Artifact URL")
    directory: Path = Field(description="Install directory")
    artifact_path: str = Field(min_length=1, description="Installed file, relative to directory")
    proxy: str | None = Field(default=None, description="HTTP proxy URL")
    extract: bool = Field(default=True, description="Unpack an archive instead of writing raw bytes")

    @field_validator("directory")
    @classmethod
    def validate_directory(cls, v: Path) -> Path:
        return v.expanduser().absolute()

    @property
    def target(self) -> Path:
        return self.directory / self.artifact_path


class Installer:
    """Fetches tunnel artifacts into an install directory."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        """Initialize Installer.

        Args:
            transport: Optional httpx transport, replaces the network in tests
        """
        self._transport = transport

    def is_installed(self, descriptor: DownloadDescriptor) -> bool:
        return descriptor.target.exists()

    async def ensure_installed(
        self,
        descriptor: DownloadDescriptor,
        *,
        force: bool = False,
        events: EventChannel | None = None,
    ) -> None:
        """Download and install the artifact unless it is already present.

        Args:
            descriptor: What to download and where to put it
            force: Download even if the artifact already exists
            events: Channel receiving downloadprogress and postdownload events

        Raises:
            DownloadFailedError: If the server answers with a non-2xx status
            ExtractFailedError: If the artifact cannot be unpacked or written
            InstallError: If the download fails at the network level
        """
        if not force and self.is_installed(descriptor):
            logger.debug("Artifact already installed", path=str(descriptor.target))
            return

        data = await self.download(descriptor, events=events)
        if events is not None:
            events.emit(EventType.POST_DOWNLOAD, PostDownloadEvent(url=descriptor.url))

        await asyncio.to_thread(self._install, data, descriptor)
        logger.info("Artifact installed", path=str(descriptor.target), url=descriptor.url)

    async def download(
        self, descriptor: DownloadDescriptor, *, events: EventChannel | None = None
    ) -> bytes:
        """Fetch the artifact body, reporting progress per received chunk.

        Cancelling the awaiting task closes the response and aborts the request.
        """
        logger.info("Downloading artifact", url=descriptor.url, proxy=descriptor.proxy is not None)
        buffer = bytearray()

        try:
            async with create_client(proxy=descriptor.proxy, transport=self._transport) as client:
                async with client.stream("GET", descriptor.url) as response:
                    if not is_success(response):
                        logger.error(
                            "Artifact download failed",
                            url=descriptor.url,
                            status_code=response.status_code,
                        )
                        raise DownloadFailedError(response.status_code, descriptor.url)

                    total = _content_length(response)
                    async for chunk in response.aiter_bytes():
                        buffer.extend(chunk)
                        if events is not None:
                            events.emit(
                                EventType.DOWNLOAD_PROGRESS,
                                DownloadProgressEvent(
                                    url=descriptor.url, received=len(buffer), total=total
                                ),
                            )
        except httpx.HTTPError as e:
            logger.error("Artifact download failed", url=descriptor.url, error=str(e))
            raise InstallError(f"Failed to download {descriptor.url}: {e}") from e

        return bytes(buffer)

    def _install(self, data: bytes, descriptor: DownloadDescriptor) -> None:
        try:
            descriptor.directory.mkdir(parents=True, exist_ok=True)
            if descriptor.extract:
                extract_archive(data, descriptor.directory)
            else:
                descriptor.target.parent.mkdir(parents=True, exist_ok=True)
                descriptor.target.write_bytes(data)
        except (OSError, tarfile.TarError, zipfile.BadZipFile) as e:
            raise ExtractFailedError(f"Failed to install {descriptor.url}: {e}") from e

        if not descriptor.target.is_file():
            raise ExtractFailedError(
                f"{descriptor.artifact_path} not found in artifact from {descriptor.url}"
            )
        make_executable(descriptor.target)


def extract_archive(data: bytes, directory: Path) -> None:
    """Unpack a zip or tar (optionally compressed) archive into directory.

    Raises:
        ExtractFailedError: If the data is neither a zip nor a tar archive
    """
    stream = io.BytesIO(data)
    if zipfile.is_zipfile(stream):
        stream.seek(0)
        with zipfile.ZipFile(stream) as archive:
            for info in archive.infolist():
                extracted = Path(archive.extract(info, directory))
                # zipfile drops permission bits; restore them from the archive
                mode = (info.external_attr >> 16) & 0o777
                if mode and not info.is_dir():
                    extracted.chmod(mode)
        return

    stream.seek(0)
    try:
        with tarfile.open(fileobj=stream, mode="r:*") as archive:
            archive.extractall(directory, filter="data")
    except tarfile.ReadError as e:
        raise ExtractFailedError(f"Unrecognized archive format: {e}") from e


def make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def _content_length(response: httpx.Response) -> int | None:
    value = response.headers.get("Content-Length")
    if value is None or not value.isdigit():
        return None
    return int(value)
