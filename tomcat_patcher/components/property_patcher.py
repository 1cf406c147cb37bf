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
Property file patching.

Each `key=value` change neutralises every active line mentioning the key in
all candidate property files, then writes the new value once into the most
specific file that exists (the last one in the configured order).

Matching is by substring, so changing `foo` also comments out `foo.bar`.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from ..utils.config import PatcherConfig
from ..utils.errors import PropertyError
from ..utils.index import log_message

COMMENT_MARKER = "#"


def property_key(line: str) -> Optional[str]:
    """Key of a `key=value` change line, or None for blanks and comments."""
    if "=" not in line or is_commented(line):
        return None
    key = line.split("=", 1)[0].strip()
    return key or None


def is_commented(line: str) -> bool:
    return line.lstrip().startswith(COMMENT_MARKER)


@dataclass
class PropertyChangeResult:
    """Outcome of applying one change line."""
    key: str
    line: str
    target: Optional[str] = None
    commented: List[Tuple[str, str]] = field(default_factory=list)
    appended: bool = False
    already_set: bool = False


class _PropertyFile:
    """Lines of one property file plus enough state to write it back unchanged."""

    def __init__(self, path: str):
        self.path = path
        try:
            with open(path, 'r', encoding='utf-8', errors='surrogateescape') as f:
                text = f.read()
        except OSError as e:
            raise PropertyError(f"Could not open property file: {path}: {e}")
        self.trailing_newline = text.endswith("\n")
        self.lines = text.splitlines()
        self.modified = False

    def save(self) -> None:
        output = "\n".join(self.lines)
        if self.lines and (self.trailing_newline or self.modified):
            output += "\n"
        try:
            with open(self.path, 'w', encoding='utf-8', errors='surrogateescape') as f:
                f.write(output)
        except OSError as e:
            raise PropertyError(f"Could not write revised file: {self.path}: {e}")


class PropertyPatcher:
    """Applies portal-supplied property changes to one Sakai instance."""

    def __init__(self, config: PatcherConfig, instance_root: str,
                 now: Callable[[], datetime] = datetime.now):
        self.config = config
        self.instance_root = instance_root
        self._now = now

    def candidate_paths(self) -> List[str]:
        """All configured property files, least specific first."""
        base = os.path.join(self.instance_root, self.config.property_dir)
        return [os.path.join(base, name) for name in self.config.property_files]

    def existing_paths(self) -> List[str]:
        return [path for path in self.candidate_paths() if os.path.isfile(path)]

    def apply(self, raw_changes: str, patch_id: str) -> List[PropertyChangeResult]:
        """
        Apply newline-separated `key=value` changes.

        Args:
            raw_changes: Property block from the patch manifest
            patch_id: Identifier written into the marker comment

        Returns:
            list: One PropertyChangeResult per change line that carried a key

        Raises:
            PropertyError: If a candidate file cannot be read or rewritten
        """
        results = []
        for raw_line in raw_changes.splitlines():
            line = raw_line.rstrip()
            key = property_key(line)
            if key is None:
                if line.strip():
                    log_message(f"[PROPS] Ignoring line without a property key: {line}", "DEBUG")
                continue
            log_message(f"[PROPS] New property key={key}", "DEBUG")
            results.append(self.apply_change(key, line, patch_id))
        return results

    def apply_change(self, key: str, line: str, patch_id: str) -> PropertyChangeResult:
        result = PropertyChangeResult(key=key, line=line)
        paths = self.existing_paths()
        if not paths:
            log_message(f"[PROPS] No property files found for {key}", "WARNING")
            return result

        target = paths[-1]
        result.target = target

        for path in paths:
            prop_file = _PropertyFile(path)
            log_message(f"[PROPS] Found property file: {path}", "DEBUG")

            for index, existing in enumerate(prop_file.lines):
                if key not in existing or is_commented(existing):
                    continue
                if path == target and not result.already_set and existing.strip() == line.strip():
                    result.already_set = True
                    continue
                log_message(f"[PROPS] Found property key: {existing}", "DEBUG")
                prop_file.lines[index] = COMMENT_MARKER + existing
                prop_file.modified = True
                result.commented.append((path, existing))

            if path == target and not result.already_set:
                stamp = self._now().strftime("%Y-%m-%d")
                prop_file.lines.append(f"{COMMENT_MARKER} Patch ID: {patch_id} ({stamp})")
                prop_file.lines.append(line)
                prop_file.modified = True
                result.appended = True
                log_message(f"[PROPS] Added new line to file {path}: {line}")

            if prop_file.modified:
                prop_file.save()

        if result.already_set:
            log_message(f"[PROPS] {key} already set in {target}")
        return result
