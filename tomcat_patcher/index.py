#!/usr/bin/env python3
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

import argparse
import logging
import os
import sys

from .components.patch_orchestrator import PatchOrchestrator
from .utils.config import TOKEN_ENV_VAR, load_config
from .utils.errors import PatchError, PortalError, SetupError
from .utils.index import log_message


def setup_global_update_logging(debug: bool = False):
    """
    Log to stdout only; cron or the shell wrapper owns redirection.
    """
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    unified_format = logging.Formatter('[%(asctime)s] [%(levelname)s] %(message)s',
                                       datefmt='%Y-%m-%d %H:%M:%S')
    console_handler.setFormatter(unified_format)
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)
    root_logger.addHandler(console_handler)
    logging.info("="*80)
    logging.info("TOMCAT PATCH SESSION STARTED")
    logging.info(f"Working Directory: {os.getcwd()}")
    logging.info(f"Python Version: {sys.version}")
    logging.info("="*80)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tomcat/Sakai patch agent")
    parser.add_argument("--token", default=None,
                        help=f"Portal security token (or set {TOKEN_ENV_VAR})")
    parser.add_argument("--dir", dest="patch_dir", default=None,
                        help="Directory to store downloaded patches (default: /tmp)")
    parser.add_argument("--web", dest="patch_web", default=None,
                        help="Website serving patch files")
    parser.add_argument("--ip", dest="local_ip", default=None,
                        help="Override automatic IP detection")
    parser.add_argument("--waitTime", "--wait-time", dest="startup_wait_seconds", type=int, default=None,
                        help="Seconds to wait for Tomcat to start (default: 280)")
    parser.add_argument("--config", dest="config_path", default=None,
                        help="Operator JSON config layered over the shipped defaults")
    parser.add_argument("--debug", action="store_true", default=None,
                        help="Enable debug logging")
    return parser


def main(argv=None) -> int:
    """
    Entry point for the patch agent.

    Exit codes: 0 when there was nothing to do or a terminal outcome was
    reported, 1 for setup, portal and unexpected errors.
    """
    args = build_parser().parse_args(argv)

    overrides = {
        "token": args.token,
        "patch_dir": args.patch_dir,
        "patch_web": args.patch_web,
        "local_ip": args.local_ip,
        "startup_wait_seconds": args.startup_wait_seconds,
        "debug": args.debug,
    }

    try:
        config = load_config(args.config_path, overrides)
    except SetupError as e:
        setup_global_update_logging(bool(args.debug))
        log_message(f"Setup failed: {e.message}", "ERROR")
        return 1
    setup_global_update_logging(config.debug)

    try:
        if not config.token:
            raise SetupError("Please provide a valid security token")

        result = PatchOrchestrator(config).run()
    except SetupError as e:
        log_message(f"Setup failed: {e.message}", "ERROR")
        return 1
    except PortalError as e:
        log_message(f"Admin portal error: {e.message}", "ERROR")
        return 1
    except PatchError as e:
        log_message(f"Patch run failed: {e.message}", "ERROR")
        return 1
    except KeyboardInterrupt:
        log_message("Patch run interrupted by user", "WARNING")
        return 130
    except Exception as e:
        log_message(f"Unexpected error during patch run: {e}", "ERROR")
        return 1

    if result.get("patched"):
        log_message(f"Reported outcome {result['outcome']} for patch {result['patch_id']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
