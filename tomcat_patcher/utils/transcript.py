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

from typing import List


class OutputTranscript:
    """Append-only record of control-script output for one run."""

    def __init__(self):
        self._chunks: List[str] = []

    def append(self, output) -> None:
        if not output:
            return
        if isinstance(output, bytes):
            output = output.decode("utf-8", errors="replace")
        self._chunks.append(output)

    def text(self) -> str:
        return "".join(self._chunks)

    def __len__(self) -> int:
        return len(self._chunks)
