"""
Docker output compaction: build, pull and ps.
"""

import re
from typing import List, Optional

from .base import FilterAdapter, LineAdapter, Stream, truncate

DOCKER_FAILURE = re.compile(r"^(ERROR|Error response from daemon|error)\b|failed to solve|returned a non-zero code")

# Columns kept from `docker ps`
PS_COLUMNS = ("CONTAINER ID", "IMAGE", "STATUS", "NAMES")
IMAGE_WIDTH = 40


class DockerBuildAdapter(FilterAdapter):
    """`docker build`: step headers, errors and the resulting image.

    BuildKit prints one `#N` line per step and per progress update; only the
    step descriptions survive, and each is kept once.
    """

    name = "docker.build"
    failure_pattern = DOCKER_FAILURE
    skip_pattern = re.compile(
        r"^#\d+ (sha256:|\[internal\]|DONE|CACHED|transferring|resolve |extracting )|^#\d+ \d+\.\d+ |^\s*$"
    )
    keep_pattern = re.compile(
        r"^#\d+ \[|^Step \d+/\d+|Successfully (built|tagged)|naming to|writing image|^ERROR|error"
    )
    empty_message = "ok ✓ Image built"

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self._seen = set()

    def on_line(self, line: str, stream: Stream) -> None:
        step = re.sub(r"^#\d+ ", "", line)
        if step in self._seen:
            return
        self._seen.add(step)
        super().on_line(line, stream)


class DockerPullAdapter(FilterAdapter):
    """`docker pull`: drop per-layer progress, keep digest and status."""

    name = "docker.pull"
    failure_pattern = DOCKER_FAILURE
    skip_pattern = re.compile(
        r"^[0-9a-f]{12}: (Pulling fs layer|Waiting|Downloading|Verifying Checksum|Download complete|Extracting|Pull complete|Already exists)"
    )
    keep_pattern = re.compile(r"^Digest:|^Status:|^docker\.io/|Error|error|denied")


class DockerPsAdapter(LineAdapter):
    """`docker ps`: id, image, status and name per container."""

    name = "docker.ps"
    failure_pattern = DOCKER_FAILURE

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.columns: Optional[List[int]] = None
        self.header: List[str] = []
        self.rows: List[str] = []

    def on_line(self, line: str, stream: Stream) -> None:
        if stream is Stream.STDERR or not line.strip():
            return
        if self.columns is None:
            if not line.startswith("CONTAINER ID"):
                # --format or -q output is already compact
                self.rows.append(line)
                self.columns = []
                return
            self.header = re.split(r"\s{2,}", line.strip())
            self.columns = [line.index(name) for name in self.header]
            return
        if not self.columns:
            self.rows.append(line)
            return
        cells = {}
        bounds = self.columns + [None]
        for name, start, end in zip(self.header, bounds, bounds[1:]):
            cells[name] = line[start:end].strip()
        if "IMAGE" in cells:
            cells["IMAGE"] = truncate(cells["IMAGE"], IMAGE_WIDTH)
        self.rows.append("  ".join(cells[c][:12] if c == "CONTAINER ID" else cells[c]
                                    for c in PS_COLUMNS if c in cells))

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if not self.rows:
            return ["No containers running"] if exit_code == 0 else []
        rows = self.rows[: self.max_lines]
        if len(self.rows) > self.max_lines:
            rows.append(f"... ({len(self.rows) - self.max_lines} more containers)")
        return [f"{len(self.rows)} containers:"] + rows if self.header else rows
