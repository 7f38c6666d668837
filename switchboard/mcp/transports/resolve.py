"""Platform-aware executable lookup for stdio providers.

A desktop app launched from a dock or start menu does not inherit the login
shell's PATH, so ``npx`` or ``uvx`` are often missing from ``os.environ``.
Lookup order: the provider's own PATH, the parent PATH, then well-known
install locations for the current platform.
"""

from __future__ import annotations

import os
import shutil
import sys
from collections.abc import Mapping
from pathlib import Path


def candidate_directories(
    platform: str | None = None,
    home: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[Path]:
    """Known install locations for user tooling, most specific first."""
    platform = platform or sys.platform
    home = home or Path.home()
    environ = os.environ if environ is None else environ

    dirs: list[Path] = []
    if platform.startswith("win"):
        appdata = environ.get("APPDATA")
        local_appdata = environ.get("LOCALAPPDATA")
        program_files = environ.get("ProgramFiles", r"C:\Program Files")
        if appdata:
            dirs.append(Path(appdata) / "npm")
        if local_appdata:
            dirs.append(Path(local_appdata) / "Programs" / "Python" / "Scripts")
        dirs += [
            Path(program_files) / "nodejs",
            home / "scoop" / "shims",
            home / ".cargo" / "bin",
            home / ".local" / "bin",
        ]
        return dirs

    if platform == "darwin":
        dirs += [Path("/opt/homebrew/bin"), Path("/usr/local/bin")]
    else:
        dirs += [Path("/usr/local/bin"), Path("/snap/bin")]

    dirs += [
        home / ".local" / "bin",
        home / ".cargo" / "bin",
        home / ".bun" / "bin",
        home / ".deno" / "bin",
        home / ".volta" / "bin",
    ]
    nvm_versions = home / ".nvm" / "versions" / "node"
    if nvm_versions.is_dir():
        dirs += [p / "bin" for p in sorted(nvm_versions.iterdir(), reverse=True)]
    dirs += [Path("/usr/bin"), Path("/bin")]
    return dirs


def resolve_command(
    command: str,
    env: Mapping[str, str] | None = None,
    *,
    platform: str | None = None,
    home: Path | None = None,
) -> tuple[str, dict[str, str]]:
    """Resolve ``command`` to an executable path and build the child env.

    Args:
        command: Executable name or path from the provider config.
        env: Extra environment variables for the child.

    Returns:
        ``(executable, child_env)``. The executable's directory is prepended
        to the child PATH so interpreters next to it (``node`` beside ``npx``)
        are found too.

    Raises:
        FileNotFoundError: If the command cannot be found anywhere.
    """
    child_env = {**os.environ, **(env or {})}
    parent_path = os.environ.get("PATH", "")
    child_path = child_env.get("PATH", parent_path)

    if os.sep in command or (os.altsep and os.altsep in command):
        path = Path(command).expanduser()
        if not path.exists():
            raise FileNotFoundError(command)
        resolved = str(path.resolve())
    else:
        known = os.pathsep.join(str(d) for d in candidate_directories(platform, home) if d.is_dir())
        found = (
            shutil.which(command, path=child_path)
            or shutil.which(command, path=parent_path)
            or shutil.which(command, path=known)
        )
        if found is None:
            raise FileNotFoundError(command)
        resolved = found

    bin_dir = str(Path(resolved).parent)
    entries = [e for e in child_path.split(os.pathsep) if e]
    if bin_dir not in entries:
        entries.insert(0, bin_dir)
    child_env["PATH"] = os.pathsep.join(entries)
    return resolved, child_env
