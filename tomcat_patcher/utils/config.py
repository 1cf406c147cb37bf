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
Patcher configuration.

One immutable PatcherConfig is built at startup and handed to every component.
Values are layered, lowest precedence first:

    built-in defaults -> shipped index.json -> operator JSON (--config)
    -> TOMCAT_PATCHER_TOKEN environment variable -> command-line overrides

Usage:
    from tomcat_patcher.utils.config import load_config

    config = load_config("/etc/tomcat-patcher.json", overrides={"token": "abc"})
"""

import json
import os
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import SetupError
from .index import log_message

TOKEN_ENV_VAR = "TOMCAT_PATCHER_TOKEN"
DEFAULT_INDEX_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "index.json")


@dataclass(frozen=True)
class PatcherConfig:
    """Every tunable the agent reads; nothing else consults process-wide state."""

    token: str = ""
    portal_url: str = "https://admin.longsight.com/longsight/json/patches"
    report_url: str = "https://admin.longsight.com/longsight/remote/patch/update"
    user_agent: str = "TomcatPatcher v1.0"
    request_timeout: int = 60
    local_ip: str = ""

    # Archive transport
    patch_dir: str = "/tmp"
    patch_web: str = "https://s3.amazonaws.com/longsight-patches/"
    url_templates: Tuple[str, ...] = ("{web}sakai-builder/{name}",)
    legacy_patch_dir: str = "/patches/"
    reuse_cached_archives: bool = False

    # Service lifecycle
    control_script: str = "bin/catalina.sh"
    stop_args: Tuple[str, ...] = ("stop", "12", "-force")
    start_args: Tuple[str, ...] = ("start",)
    stop_grace_seconds: int = 10
    kill_passes: int = 2
    process_names: Tuple[str, ...] = ("java",)

    # Readiness
    startup_log: str = "logs/catalina.out"
    startup_marker: str = "Server startup in"
    defer_signatures: Tuple[str, ...] = ("Migration checksum mismatch",)
    startup_wait_seconds: int = 280
    startup_settle_seconds: int = 40
    startup_poll_seconds: int = 10

    # Properties
    property_dir: str = "sakai"
    property_files: Tuple[str, ...] = (
        "instance.properties",
        "dev.properties",
        "local.properties",
        "sakai.properties",
    )

    # Archive classification
    protected_patterns: Tuple[str, ...] = (
        "components/sakai-provider-pack/WEB-INF/unboundid-ldap*.xml",
        "components/sakai-provider-pack/WEB-INF/jldap-beans*.xml",
        "components/sakai-provider-pack/WEB-INF/components.xml",
    )
    component_root: str = "components"
    provider_pack: str = "sakai-provider-pack"
    component_threshold: int = 3
    federated_pairs: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({"sakai-content-review-pack-federated": "sakai-content-review-pack"})
    )
    webapp_root: str = "webapps"
    bundle_suffix: str = ".war"
    library_dirs: Tuple[str, ...] = ("shared/lib/", "common/lib/", "lib/")
    library_suffix: str = ".jar"
    literal_library_names: Tuple[str, ...] = ("gradebook2",)
    snapshot_suffix: str = "-SNAPSHOT"
    connector_markers: Tuple[str, ...] = ("mysql-connector", "mariadb")

    debug: bool = False

    def with_overrides(self, **changes) -> "PatcherConfig":
        """Return a copy with the given fields replaced and re-validated."""
        merged = {f.name: getattr(self, f.name) for f in fields(self)}
        merged.update(changes)
        return _build(merged)


def _default_values() -> Dict[str, Any]:
    defaults = PatcherConfig()
    return {f.name: getattr(defaults, f.name) for f in fields(defaults)}


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Convert a JSON/CLI value to the type of the field's default."""
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false", "1", "0", "yes", "no"):
            return value.lower() in ("true", "1", "yes")
        raise SetupError(f"Config field '{name}' must be a boolean, got {value!r}")

    if isinstance(default, int):
        if isinstance(value, bool):
            raise SetupError(f"Config field '{name}' must be an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise SetupError(f"Config field '{name}' must be an integer, got {value!r}")

    if isinstance(default, tuple):
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
            raise SetupError(f"Config field '{name}' must be a list of strings, got {value!r}")
        return tuple(value)

    if isinstance(default, MappingProxyType):
        if not isinstance(value, Mapping) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in value.items()
        ):
            raise SetupError(f"Config field '{name}' must be an object of strings, got {value!r}")
        return MappingProxyType(dict(value))

    if value is None:
        return ""
    if not isinstance(value, (str, int, float)):
        raise SetupError(f"Config field '{name}' must be a string, got {value!r}")
    return str(value)


def _build(values: Mapping[str, Any]) -> PatcherConfig:
    defaults = _default_values()
    coerced = {name: _coerce(name, values[name], defaults[name]) for name in defaults}
    config = PatcherConfig(**coerced)

    if config.startup_poll_seconds < 1:
        raise SetupError("startup_poll_seconds must be at least 1")
    if config.startup_wait_seconds < 0 or config.startup_settle_seconds < 0:
        raise SetupError("Startup wait settings must not be negative")
    if config.kill_passes < 1:
        raise SetupError("kill_passes must be at least 1")
    if not config.property_files:
        raise SetupError("property_files must name at least one file")
    return config


def _merge_section(values: Dict[str, Any], section: Mapping[str, Any], source: str) -> None:
    for key, value in section.items():
        if key not in values:
            log_message(f"Ignoring unknown config key '{key}' from {source}", "WARNING")
            continue
        values[key] = value


def _read_document(path: str) -> Dict[str, Any]:
    """Read a JSON config document; both {"config": {...}} and flat objects are accepted."""
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise SetupError(f"Config file not found: {path}")
    except (OSError, ValueError) as e:
        raise SetupError(f"Config file unreadable: {path}: {e}")

    if not isinstance(data, dict):
        raise SetupError(f"Config file must hold a JSON object: {path}")
    section = data.get("config", data)
    if not isinstance(section, dict):
        raise SetupError(f"'config' section must be an object: {path}")
    return section


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    index_path: str = DEFAULT_INDEX_PATH,
) -> PatcherConfig:
    """
    Build the run configuration.

    Args:
        config_path: Optional operator JSON document layered over index.json
        overrides: Command-line values; None entries are ignored
        environ: Environment mapping (defaults to os.environ)
        index_path: Location of the shipped defaults document

    Returns:
        PatcherConfig: Validated, immutable configuration

    Raises:
        SetupError: If a document is unreadable or a value has the wrong type
    """
    environ = os.environ if environ is None else environ
    values = _default_values()

    if os.path.exists(index_path):
        _merge_section(values, _read_document(index_path), index_path)
    else:
        log_message(f"Shipped config not found at {index_path}, using built-in defaults", "DEBUG")

    if config_path:
        _merge_section(values, _read_document(config_path), config_path)

    env_token = environ.get(TOKEN_ENV_VAR)
    if env_token:
        values["token"] = env_token

    if overrides:
        _merge_section(values, {k: v for k, v in overrides.items() if v is not None}, "command line")

    return _build(values)


__all__ = ["PatcherConfig", "load_config", "TOKEN_ENV_VAR"]
