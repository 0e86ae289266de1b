"""
Archive folder listing.

The reconciler only needs the entry names inside an artist's archive
folder; where those come from is up to the lister.
"""

import logging
import os
import shlex
import subprocess
from typing import List, Protocol

logger = logging.getLogger(__name__)


class ArchiveLister(Protocol):
    def list_folder(self, path: str) -> List[str]:
        """Names of the entries directly inside ``path``."""


class LocalArchiveLister:
    """Lists a folder on the local filesystem.

    A missing or unreadable folder yields an empty listing.
    """

    def list_folder(self, path: str) -> List[str]:
        try:
            return sorted(os.listdir(path))
        except FileNotFoundError:
            logger.info(f"Archive folder does not exist: {path}")
            return []
        except NotADirectoryError:
            logger.warning(f"Archive path is not a folder: {path}")
            return []
        except OSError as e:
            logger.warning(f"Could not list archive folder {path}: {e}")
            return []


class SshArchiveLister:
    """Lists a folder on a remote host with ``ssh <host> ls -1``.

    An unreachable host or missing folder yields an empty listing, the same
    as an artist with nothing archived yet.
    """

    def __init__(self, host: str, timeout: float = 60.0):
        if not host or not host.strip():
            raise ValueError("host is required and cannot be empty")
        self.host = host
        self.timeout = timeout

    def list_folder(self, path: str) -> List[str]:
        command = ["ssh", self.host, "ls", "-1", shlex.quote(path)]
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Could not list {path} on {self.host}: {e}")
            return []

        if result.returncode != 0:
            logger.warning(
                f"Listing {path} on {self.host} failed ({result.returncode}): {result.stderr.strip()}"
            )
            return []

        return [line for line in result.stdout.splitlines() if line.strip()]
