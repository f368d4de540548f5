"""
Asset mirroring into the shared local cache directory.

The cache is keyed by basename only: /x/app.js and /y/app.js map to the same
file, and whichever was written first is reused for both. Files are never
expired while the process runs.
"""

import os
import posixpath
import tempfile
import threading
from pathlib import Path
from typing import Iterable, List, Optional
from urllib.parse import urljoin, urlparse

import requests

from proxy.core import ASSET_CACHE_DIR, ASSET_TIMEOUT, DEFAULT_USER_AGENT, setup_logger
from proxy.models import AssetReference, MirroredAsset

logger = setup_logger("proxy.mirror")

CHUNK_SIZE = 64 * 1024


class AssetFetchError(Exception):
    """A single asset could not be downloaded. Never leaves the mirror."""
    pass

class RequestCancelledError(Exception):
    """The request that owns this work has gone away."""
    pass


def asset_filename(url: str) -> Optional[str]:
    """
    Cache key for an asset URL: the last segment of its path.
    None when the path has no usable final segment.
    """
    name = posixpath.basename(urlparse(url).path)
    if name in ("", ".", ".."):
        return None
    return name


def _check_cancelled(cancel: Optional[threading.Event]):
    if cancel is not None and cancel.is_set():
        raise RequestCancelledError("request cancelled during asset mirroring")


class AssetMirror:
    """
    FLOW: Resolves a reference against the target origin -> Derives the basename ->
    Reuses an existing cached file or downloads it -> Reports the local path, or None on failure.
    """

    def __init__(self, cache_dir=ASSET_CACHE_DIR, timeout: float = ASSET_TIMEOUT,
                 user_agent: str = DEFAULT_USER_AGENT):
        self.cache_dir = Path(cache_dir)
        self.timeout = timeout
        self.user_agent = user_agent
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.cache_dir / name

    def mirror(self, ref: AssetReference, base_url: str,
               cancel: Optional[threading.Event] = None) -> MirroredAsset:
        try:
            source_url = urljoin(base_url, ref.raw_url.strip())
            name = asset_filename(source_url)
        except ValueError as e:
            logger.warning(f"[MIRROR] Skipping unparsable asset reference {ref.raw_url!r}: {e}")
            return MirroredAsset(ref.raw_url)

        if not name:
            logger.debug(f"[MIRROR] Skipping {ref.raw_url!r}: no file name in path")
            return MirroredAsset(source_url)

        # Inline-script tokens can yield names the filesystem refuses
        try:
            target = self.path_for(name)
            cached = target.exists()
        except (OSError, ValueError) as e:
            logger.error(f"[MIRROR] Unusable asset file name for {ref.raw_url[:120]!r}: {e}")
            return MirroredAsset(source_url)

        if cached:
            logger.debug(f"[MIRROR] Cache hit {name} for {source_url}")
            return MirroredAsset(source_url, target)

        try:
            self._download(source_url, target, cancel)
        except AssetFetchError as e:
            logger.error(f"[MIRROR] Failed to download asset: {ref.raw_url} ({e})")
            return MirroredAsset(source_url)

        logger.debug(f"[MIRROR] Downloaded {source_url} -> {target}")
        return MirroredAsset(source_url, target)

    def mirror_all(self, refs: Iterable[AssetReference], base_url: str,
                   cancel: Optional[threading.Event] = None) -> List[MirroredAsset]:
        """Mirror sequentially in discovery order. Only cancellation stops the loop."""
        results = []
        for ref in refs:
            _check_cancelled(cancel)
            results.append(self.mirror(ref, base_url, cancel))
        return results

    def _download(self, url: str, target: Path, cancel: Optional[threading.Event]):
        """
        Streams into a temp file in the cache directory and renames it over
        the target, so readers never see a partial file.
        """
        tmp_path = None
        try:
            with requests.get(
                url,
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                stream=True,
            ) as r:
                r.raise_for_status()
                with tempfile.NamedTemporaryFile(dir=self.cache_dir, prefix=".part-", delete=False) as f:
                    tmp_path = f.name
                    for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                        _check_cancelled(cancel)
                        if chunk:
                            f.write(chunk)
            os.replace(tmp_path, target)
            tmp_path = None
        except requests.exceptions.RequestException as e:
            raise AssetFetchError(str(e)) from e
        except OSError as e:
            raise AssetFetchError(f"could not write {target.name}: {e}") from e
        except ValueError as e:
            # Host names that fail IDNA encoding and similar
            raise AssetFetchError(str(e)) from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
