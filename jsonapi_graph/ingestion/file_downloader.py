"""
Remote file downloader — default materializer for file nodes.

Writes each remote file once into a download directory and returns the local
path as the handle stored on the node. Credentials arrive in the
``{"htaccess_user", "htaccess_pass"}`` shape produced by the file attachment
orchestrator; an empty dict means an anonymous request.

Uses only Python stdlib (urllib.request).
"""
import base64
import hashlib
import logging
import os
import tempfile
import urllib.error
import urllib.parse
import urllib.request
from typing import Mapping, Optional

logger = logging.getLogger(__name__)


class UrllibFileDownloader:
    """Callable materializer: ``downloader(url=..., auth=..., parent_node_id=...) -> path``.

    Args:
        directory: Target directory (created on first use).
        timeout: Socket timeout in seconds.
    """

    def __init__(self, directory: str, timeout: float = 60.0) -> None:
        self.directory = directory
        self.timeout = timeout

    def _target_path(self, url: str) -> str:
        name = os.path.basename(urllib.parse.urlsplit(url).path) or "file"
        prefix = hashlib.sha1(url.encode("utf-8")).hexdigest()[:12]
        return os.path.join(self.directory, f"{prefix}-{name}")

    def __call__(
        self,
        url: str,
        auth: Optional[Mapping[str, str]] = None,
        parent_node_id: Optional[str] = None,
    ) -> str:
        os.makedirs(self.directory, exist_ok=True)
        target = self._target_path(url)
        if os.path.exists(target):
            logger.debug("Already downloaded: %s", url)
            return target

        headers = {}
        if auth:
            raw = f"{auth.get('htaccess_user', '')}:{auth.get('htaccess_pass', '')}"
            headers["Authorization"] = "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")

        req = urllib.request.Request(url, headers=headers)
        # unique per call: several nodes may share one URL and download concurrently
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=os.path.basename(target) + ".", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh, urllib.request.urlopen(req, timeout=self.timeout) as resp:
                while True:
                    chunk = resp.read(64 * 1024)
                    if not chunk:
                        break
                    fh.write(chunk)
            os.replace(tmp, target)
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)
        logger.info("Downloaded %s for %s -> %s", url, parent_node_id, target)
        return target
