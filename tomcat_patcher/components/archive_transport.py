"""
HOMESERVER Update Management System
Copyright (C) 2024 HOMESERVER LLC

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

"""
Patch archive retrieval.

Locators are resolved in order: the path exactly as given, the local patch
directory, then each remote URL. Downloads are streamed to a `.part` file and
only renamed into place once the advertised length has been received.
"""

import os
from typing import List, Optional

import requests

from ..utils.config import PatcherConfig
from ..utils.errors import TransferError
from ..utils.index import log_message, path_exists

CHUNK_SIZE = 64 * 1024


class ArchiveTransport:
    """Turns archive locators from a manifest into local file paths."""

    def __init__(self, config: PatcherConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": config.user_agent})

    def candidate_urls(self, locator: str) -> List[str]:
        """Remote URLs to try for a locator, legacy patch-directory URL first."""
        web = self.config.patch_web
        name = os.path.basename(locator)
        urls = []
        if self.config.legacy_patch_dir and self.config.legacy_patch_dir in locator:
            urls.append(web + locator.replace(self.config.legacy_patch_dir, "patches/", 1))
        for template in self.config.url_templates:
            url = template.format(web=web, name=name)
            if url not in urls:
                urls.append(url)
        return urls

    def fetch(self, locator: str) -> str:
        """
        Resolve one locator to a readable archive on local disk.

        Args:
            locator: Path or name from the manifest 'files' list

        Returns:
            str: Local path of the archive

        Raises:
            TransferError: If no source yields the archive or a download is truncated
        """
        if os.path.isfile(locator):
            log_message(f"[FETCH] Using patch at {locator}", "DEBUG")
            return locator

        name = os.path.basename(locator)
        if not name:
            raise TransferError(f"Could not find the patch file: {locator}")

        cached = os.path.join(self.config.patch_dir, name)
        if path_exists(cached):
            if self.config.reuse_cached_archives:
                log_message(f"[FETCH] Reusing cached patch {cached}")
                return cached
            try:
                os.remove(cached)
            except OSError as e:
                raise TransferError(f"Could not remove stale patch {cached}: {e}")
            log_message(f"[FETCH] Deleted old temp file: {cached}", "DEBUG")

        for url in self.candidate_urls(locator):
            if self._download(url, cached):
                log_message(f"[FETCH] ✓ Final patch path: {cached}")
                return cached

        raise TransferError(f"Could not find the patch file: {name}")

    def _download(self, url: str, destination: str) -> bool:
        partial = destination + ".part"
        log_message(f"[FETCH] Trying to fetch patch: {url}")
        written = 0
        expected = None
        receiving = False

        try:
            with self.session.get(url, stream=True, timeout=self.config.request_timeout) as resp:
                if resp.status_code != 200:
                    log_message(f"[FETCH] Could not find patch at {url} (HTTP {resp.status_code})", "WARNING")
                    return False

                length = resp.headers.get("Content-Length")
                if length and length.isdigit():
                    expected = int(length)

                with open(partial, "wb") as f:
                    receiving = True
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
                            written += len(chunk)
        except requests.RequestException as e:
            self._discard(partial)
            if receiving:
                raise TransferError(f"Download of {url} broke off after {written} bytes: {e}")
            log_message(f"[FETCH] Download failed for {url}: {e}", "WARNING")
            return False
        except OSError as e:
            self._discard(partial)
            raise TransferError(f"Could not write patch to {partial}: {e}")

        if expected is not None and written < expected:
            self._discard(partial)
            raise TransferError(f"Short read from {url}: {written} of {expected} bytes")

        try:
            os.replace(partial, destination)
        except OSError as e:
            self._discard(partial)
            raise TransferError(f"Could not move patch into place at {destination}: {e}")

        log_message(f"[FETCH] Copied remote file bytes: {written}", "DEBUG")
        return True

    @staticmethod
    def _discard(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            log_message(f"[FETCH] Could not remove partial download {path}: {e}", "WARNING")
