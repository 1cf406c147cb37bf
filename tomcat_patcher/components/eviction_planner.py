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
Eviction of stale artifacts.

Works from the bucket of a dry archive scan and removes what the archive is
about to replace:

- component directories the archive ships more than a handful of files for
- exploded webapp directories that would shadow an incoming .war
- older versions of shared-library jars, matched by a version-agnostic glob
"""

import glob
import os
import re
import shutil
from dataclasses import dataclass, field
from typing import List, Optional

from ..utils.config import PatcherConfig
from ..utils.errors import EvictionError
from ..utils.index import is_within, log_message, path_exists
from .archive_operations import ArchiveEntryBucket, is_library_jar

DIRECTORY = "directory"
LIBRARY = "library"

_DIGIT_RUN = re.compile(r"[0-9]+")


def replace_version_digits(filename: str) -> str:
    """Collapse every run of digits to a single '*' (jaxb-impl-2.3.3.jar -> jaxb-impl-*.*.*.jar)."""
    return _DIGIT_RUN.sub("*", filename)


@dataclass(frozen=True)
class EvictionTarget:
    """One instance-relative path to remove; libraries are glob patterns."""
    kind: str
    path: str


@dataclass
class EvictionPlan:
    targets: List[EvictionTarget] = field(default_factory=list)

    def add(self, kind: str, path: str) -> None:
        target = EvictionTarget(kind, path)
        if target not in self.targets:
            self.targets.append(target)

    @property
    def paths(self) -> List[str]:
        return [target.path for target in self.targets]

    def __len__(self) -> int:
        return len(self.targets)


@dataclass
class EvictionResult:
    removed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class EvictionPlanner:
    """Decides and performs removals inside a single Tomcat instance."""

    def __init__(self, config: PatcherConfig, instance_root: str):
        self.config = config
        self.instance_root = instance_root

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------
    def plan(self, bucket: ArchiveEntryBucket) -> EvictionPlan:
        """
        Classify every bucket group.

        Args:
            bucket: Group key -> regular-file count from the dry scan

        Returns:
            EvictionPlan: Ordered targets, first-seen order of the bucket
        """
        plan = EvictionPlan()
        component_prefix = f"{self.config.component_root}/"
        webapp_prefix = f"{self.config.webapp_root}/"

        for key, count in bucket.items():
            if (key.startswith(component_prefix)
                    and self.config.provider_pack not in key
                    and count > self.config.component_threshold):
                plan.add(DIRECTORY, key)
                counterpart = self._federated_counterpart(key)
                if counterpart:
                    plan.add(DIRECTORY, counterpart)
            elif key.startswith(webapp_prefix) and key.endswith(self.config.bundle_suffix):
                plan.add(DIRECTORY, key[:-len(self.config.bundle_suffix)])
            elif is_library_jar(key, self.config):
                plan.add(LIBRARY, self.library_glob(key))

        log_message(f"[EVICT] Planned {len(plan)} evictions: {plan.paths}", "DEBUG")
        return plan

    def _federated_counterpart(self, key: str) -> Optional[str]:
        group = key.split("/", 1)[1]
        counterpart = self.config.federated_pairs.get(group)
        if counterpart:
            return f"{self.config.component_root}/{counterpart}"
        return None

    def library_glob(self, path: str) -> str:
        """Turn a versioned jar path into a pattern matching every version of it."""
        directory, filename = os.path.split(path)
        if not any(name in filename for name in self.config.literal_library_names):
            filename = replace_version_digits(filename)
        filename = filename.replace(self.config.snapshot_suffix, "", 1)
        return os.path.join(glob.escape(directory), filename) if directory else filename

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def evict(self, bucket: ArchiveEntryBucket) -> EvictionResult:
        return self.execute(self.plan(bucket))

    def execute(self, plan: EvictionPlan) -> EvictionResult:
        """
        Remove everything in the plan.

        Raises:
            EvictionError: If a directory target cannot be removed. Library
                matches that fail are recorded and the next match is tried.
        """
        result = EvictionResult()
        for target in plan.targets:
            if target.kind == DIRECTORY:
                self._remove_directory(target.path, result)
            else:
                self._remove_library_matches(target.path, result)
        return result

    def _inside_root(self, absolute: str) -> bool:
        parent = os.path.dirname(absolute)
        if not is_within(self.instance_root, parent):
            return False
        return os.path.realpath(absolute) != os.path.realpath(self.instance_root)

    def _remove_directory(self, relative: str, result: EvictionResult) -> None:
        absolute = os.path.join(self.instance_root, relative)
        if not self._inside_root(absolute):
            log_message(f"[EVICT] ✗ Refusing to remove path outside instance: {relative}", "ERROR")
            result.skipped.append(relative)
            return
        if not path_exists(absolute):
            log_message(f"[EVICT] Nothing to remove at {relative}", "DEBUG")
            return

        try:
            if os.path.islink(absolute) or not os.path.isdir(absolute):
                os.unlink(absolute)
            else:
                shutil.rmtree(absolute)
        except OSError as e:
            raise EvictionError(f"Could not remove path: {relative}: {e}")

        log_message(f"[EVICT] Deleted path: {relative}")
        result.removed.append(relative)

    def _remove_library_matches(self, pattern: str, result: EvictionResult) -> None:
        matches = sorted(glob.glob(os.path.join(glob.escape(self.instance_root), pattern)))
        log_message(f"[EVICT] Found files matching {pattern}: {matches}", "DEBUG")

        # A link and its target are two names for one file; neither is removed.
        accounted = set()
        for match in matches:
            if os.path.islink(match):
                accounted.add(os.path.realpath(match))

        for match in matches:
            relative = os.path.relpath(match, self.instance_root)
            if os.path.islink(match) or os.path.isdir(match):
                log_message(f"[EVICT] Skipping file: {relative}", "DEBUG")
                result.skipped.append(relative)
                continue
            real = os.path.realpath(match)
            if real in accounted or not self._inside_root(match):
                log_message(f"[EVICT] Skipping file: {relative}", "DEBUG")
                result.skipped.append(relative)
                continue
            accounted.add(real)
            try:
                os.remove(match)
            except OSError as e:
                log_message(f"[EVICT] ✗ Failed to remove {relative}: {e}", "ERROR")
                result.failed.append(relative)
                continue
            log_message(f"[EVICT] Removing: {relative}")
            result.removed.append(relative)

    # ------------------------------------------------------------------
    # Duplicate JDBC connectors
    # ------------------------------------------------------------------
    def _catalina_home(self) -> Optional[str]:
        setenv = os.path.join(self.instance_root, "bin", "setenv.sh")
        try:
            with open(setenv, 'r') as f:
                for line in f:
                    stripped = line.strip()
                    if stripped.startswith("#") or "CATALINA_HOME" not in stripped or "=" not in stripped:
                        continue
                    value = stripped.split("=", 1)[1].strip().strip("\"' ")
                    return value or None
        except OSError as e:
            log_message(f"[EVICT] Could not read bin/setenv.sh: {e}", "WARNING")
        return None

    def remove_duplicate_connector_jars(self) -> List[str]:
        """
        Drop instance-local JDBC connector jars when CATALINA_HOME already ships one.

        Returns:
            list: Instance-relative paths that were removed
        """
        catalina_home = self._catalina_home()
        if not catalina_home:
            return []

        home_lib = os.path.join(catalina_home, "lib")
        instance_lib = os.path.join(self.instance_root, "lib")
        if os.path.realpath(home_lib) == os.path.realpath(instance_lib):
            return []

        try:
            home_names = os.listdir(home_lib)
        except OSError as e:
            log_message(f"[EVICT] Could not read CATALINA_HOME lib {home_lib}: {e}", "DEBUG")
            return []

        markers = self.config.connector_markers
        if not any(marker in name for name in home_names for marker in markers):
            return []

        try:
            instance_names = sorted(os.listdir(instance_lib))
        except OSError as e:
            log_message(f"[EVICT] Could not read instance lib {instance_lib}: {e}", "DEBUG")
            return []

        removed = []
        for name in instance_names:
            if not any(marker in name for marker in markers):
                continue
            try:
                os.remove(os.path.join(instance_lib, name))
            except OSError as e:
                log_message(f"[EVICT] ✗ Failed to remove lib/{name}: {e}", "ERROR")
                continue
            log_message(f"[EVICT] Removed duplicate connector lib/{name}")
            removed.append(os.path.join("lib", name))
        return removed
