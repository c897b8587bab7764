"""
Storage Collaborator

Moves playlists and media between the storage root and an invocation's
scratch directory:
- Fetches a source playlist (HTTP(S), file:// or a key under the root)
  together with every segment it references
- Publishes a rebuilt playlist directory or an exported file under the root

Locations handed in by callers never escape the storage root, and segment
references of a local manifest never escape the root (keys) or the
manifest's own directory (file:// URLs). Playlists are read and written as
bytes so their line endings are kept.
"""

import logging
import shutil
from dataclasses import replace
from pathlib import Path
from urllib.parse import unquote, urljoin, urlparse

import httpx

from .compositor.errors import TransformError, ValidationError
from .compositor.timeline import Timeline, parse_playlist

logger = logging.getLogger(__name__)

LOCAL_PLAYLIST_NAME = "playlist.m3u8"
LOCAL_SEGMENT_PATTERN = "{:05d}.ts"

REMOTE_SCHEMES = ("http", "https")


class LocalStorage:
    """
    Filesystem storage rooted at one directory.

    Args:
        root: Storage root; output locations and relative manifest keys
            resolve beneath it
        download_timeout: Timeout in seconds for each remote download
    """

    def __init__(self, root: Path, download_timeout: float = 60.0):
        self.root = Path(root).resolve()
        self.download_timeout = download_timeout

    def resolve_key(self, key: str) -> Path:
        """
        Map a storage key to a path under the root.

        Raises:
            ValidationError: If the key is empty or points outside the root
        """
        cleaned = (key or "").strip().lstrip("/")
        if not cleaned or "\x00" in cleaned:
            raise ValidationError(f"Invalid storage location: {key!r}")

        path = (self.root / cleaned).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValidationError(f"Storage location escapes storage root: {key!r}")
        return path

    def fetch_playlist(self, manifest_reference: str, dest_dir: Path) -> Path:
        """
        Copy a playlist and its segments into dest_dir.

        Segments are stored as 00000.ts, 00001.ts, ... and the playlist's
        reference lines are rewritten to those names; every other line is
        kept as written.

        Returns:
            Path of the local playlist (dest_dir/playlist.m3u8)

        Raises:
            ValidationError: If the reference cannot be resolved
            FormatError: If the manifest is not a valid playlist
            TransformError: If the manifest or a segment cannot be read
        """
        dest_dir.mkdir(parents=True, exist_ok=True)
        scheme = urlparse(manifest_reference).scheme.lower()

        if scheme in REMOTE_SCHEMES:
            with httpx.Client(timeout=self.download_timeout, follow_redirects=True) as client:
                text = self._download_text(client, manifest_reference)
                timeline = parse_playlist(text)
                logger.info(
                    f"Fetched manifest {manifest_reference}: {len(timeline)} segments"
                )
                local = self._localize(
                    timeline,
                    lambda ref, target: self._download_file(
                        client, urljoin(manifest_reference, ref), target
                    ),
                    dest_dir,
                )
        else:
            manifest_path = self._local_manifest_path(manifest_reference, scheme)
            if not manifest_path.is_file():
                raise TransformError(f"Manifest not found: {manifest_reference}")
            timeline = parse_playlist(manifest_path.read_bytes().decode("utf-8"))
            logger.info(f"Loaded manifest {manifest_path}: {len(timeline)} segments")
            boundary = manifest_path.parent if scheme == "file" else self.root
            local = self._localize(
                timeline,
                lambda ref, target: self._copy_file(
                    _confined_path(manifest_path.parent, ref, boundary), target
                ),
                dest_dir,
            )

        playlist_path = dest_dir / LOCAL_PLAYLIST_NAME
        playlist_path.write_bytes(local.to_m3u8().encode("utf-8"))
        return playlist_path

    def publish_directory(self, src_dir: Path, output_location: str) -> str:
        """
        Copy a rebuilt playlist and the media it references to
        <root>/<output_location>/.

        Returns:
            Storage key of the published playlist
        """
        target_dir = self.resolve_key(output_location)
        playlist_path = src_dir / LOCAL_PLAYLIST_NAME
        timeline = parse_playlist(playlist_path.read_bytes().decode("utf-8"))

        target_dir.mkdir(parents=True, exist_ok=True)
        for reference in timeline.references():
            name = reference.strip()
            self._copy_file(_confined_path(src_dir, name, src_dir), target_dir / name)
        shutil.copy2(playlist_path, target_dir / LOCAL_PLAYLIST_NAME)

        key = str((target_dir / LOCAL_PLAYLIST_NAME).relative_to(self.root))
        logger.info(f"Published {len(timeline)} entries to {key}")
        return key

    def publish_file(self, path: Path, key: str) -> str:
        """Copy one file to <root>/<key> and return the key."""
        target = self.resolve_key(key)
        self._copy_file(path, target)
        published = str(target.relative_to(self.root))
        logger.info(f"Published {path.name} to {published}")
        return published

    def _local_manifest_path(self, manifest_reference: str, scheme: str) -> Path:
        if scheme == "file":
            return Path(unquote(urlparse(manifest_reference).path)).resolve()
        if scheme:
            raise ValidationError(f"Unsupported manifest scheme: {scheme}")
        return self.resolve_key(manifest_reference)

    def _localize(self, timeline: Timeline, fetch, dest_dir: Path) -> Timeline:
        segments = []
        for seg in timeline.segments:
            name = LOCAL_SEGMENT_PATTERN.format(seg.index)
            fetch(seg.reference.strip(), dest_dir / name)
            segments.append(replace(seg, reference=name))
        return replace(timeline, segments=tuple(segments))

    def _download_text(self, client: httpx.Client, url: str) -> str:
        try:
            response = client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransformError(f"Failed to download {url}: {e}") from e
        return response.text

    def _download_file(self, client: httpx.Client, url: str, target: Path) -> None:
        try:
            with client.stream("GET", url) as response:
                response.raise_for_status()
                with open(target, "wb") as f:
                    for chunk in response.iter_bytes():
                        f.write(chunk)
        except httpx.HTTPError as e:
            raise TransformError(f"Failed to download {url}: {e}") from e

    @staticmethod
    def _copy_file(source: Path, target: Path) -> None:
        if not source.is_file():
            raise TransformError(f"Media file not found: {source}")
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, target)


def _confined_path(base_dir: Path, reference: str, boundary: Path) -> Path:
    """
    Resolve a segment reference against base_dir.

    Raises:
        ValidationError: If the reference is absolute or resolves outside boundary
    """
    if not reference or "\x00" in reference or Path(reference).is_absolute():
        raise ValidationError(f"Invalid segment reference: {reference!r}")

    boundary = boundary.resolve()
    path = (base_dir / reference).resolve()
    if boundary not in path.parents:
        raise ValidationError(f"Segment reference escapes {boundary}: {reference!r}")
    return path


def storage_from_settings(settings) -> LocalStorage:
    return LocalStorage(
        root=Path(settings.storage_path),
        download_timeout=settings.download_timeout,
    )
