"""
Workspace management for deployed bots.

Each bot gets its own directory under the workspace root holding the submitted
source and a package.json listing the modules the source imports, so that the
dependency install step stays scoped to that directory.
"""

import json
import logging
import re
from pathlib import Path

from .errors import WorkspaceError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"

# require("x"), import x from "x", import "x", export ... from "x", import("x")
_IMPORT_PATTERNS = [
    re.compile(r"""\brequire\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""\bimport\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""\bimport\s+(?:[\w*{}\s,$]+\s+from\s+)?['"]([^'"]+)['"]"""),
    re.compile(r"""\bexport\s+[\w*{}\s,$]+\s+from\s+['"]([^'"]+)['"]"""),
]

NODE_BUILTINS = frozenset(
    {
        "assert", "async_hooks", "buffer", "child_process", "cluster", "console",
        "constants", "crypto", "dgram", "diagnostics_channel", "dns", "domain",
        "events", "fs", "http", "http2", "https", "inspector", "module", "net",
        "os", "path", "perf_hooks", "process", "punycode", "querystring",
        "readline", "repl", "stream", "string_decoder", "sys", "timers", "tls",
        "trace_events", "tty", "url", "util", "v8", "vm", "wasi",
        "worker_threads", "zlib",
    }
)


def package_name(specifier: str) -> str | None:
    """
    Map an import specifier to the package that provides it.

    Returns None for relative or absolute paths and Node built-ins.
    "lodash/fp" -> "lodash", "@slack/bolt/dist" -> "@slack/bolt".
    """
    if specifier.startswith((".", "/")) or specifier.startswith("node:"):
        return None

    parts = specifier.split("/")
    if specifier.startswith("@"):
        if len(parts) < 2 or not parts[1]:
            return None
        name = "/".join(parts[:2])
    else:
        name = parts[0]

    if name.split("/")[0] in NODE_BUILTINS:
        return None
    return name


def detect_dependencies(source: str) -> list[str]:
    """Get the sorted third-party packages imported by a script."""
    found = set()
    for pattern in _IMPORT_PATTERNS:
        for match in pattern.finditer(source):
            name = package_name(match.group(1))
            if name:
                found.add(name)
    return sorted(found)


class WorkspaceManager:
    """Creates and owns per-bot directories under a root path."""

    def __init__(self, root: Path, entry_point: str = "script.js"):
        self.root = Path(root)
        self.entry_point = entry_point

    def ensure_root(self):
        """Create the workspace root if it does not exist."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkspaceError("Failed to create workspace root", str(e)) from e

    def path_for(self, identity: str) -> Path:
        return self.root / identity

    def prepare(self, identity: str, source: str) -> Path:
        """Create the bot directory and write its source and manifest."""
        workspace = self.path_for(identity)
        try:
            workspace.mkdir(parents=True, exist_ok=True)
            (workspace / self.entry_point).write_text(source, encoding="utf-8")
            self._write_manifest(workspace, identity, source)
        except (OSError, UnicodeError) as e:
            logger.error(f"Failed to prepare workspace for {identity}: {e}")
            raise WorkspaceError("Failed to prepare workspace", str(e)) from e

        logger.info(f"Prepared workspace for {identity} at {workspace}")
        return workspace

    def _write_manifest(self, workspace: Path, identity: str, source: str):
        dependencies = detect_dependencies(source)
        manifest = {
            "name": identity,
            "version": "1.0.0",
            "private": True,
            "main": self.entry_point,
            "dependencies": {name: "*" for name in dependencies},
        }
        (workspace / MANIFEST_NAME).write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
        if dependencies:
            logger.info(f"Detected dependencies for {identity}: {', '.join(dependencies)}")
