"""Unit tests for platform-aware executable lookup."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from switchboard.mcp.transports.resolve import candidate_directories, resolve_command

pytestmark = pytest.mark.skipif(os.name == "nt", reason="POSIX executable bits")


def make_executable(directory: Path, name: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("#!/bin/sh\n")
    path.chmod(0o755)
    return path


class TestCandidateDirectories:
    """Tests for known install locations."""

    def test_macos_includes_homebrew(self, tmp_path: Path) -> None:
        """macOS should look in the Homebrew prefix first."""
        dirs = candidate_directories("darwin", tmp_path, {})

        assert dirs[0] == Path("/opt/homebrew/bin")
        assert tmp_path / ".local" / "bin" in dirs

    def test_windows_uses_appdata(self, tmp_path: Path) -> None:
        """Windows should include the npm global directory under APPDATA."""
        dirs = candidate_directories("win32", tmp_path, {"APPDATA": "C:/Users/me/AppData/Roaming"})

        assert dirs[0] == Path("C:/Users/me/AppData/Roaming") / "npm"

    def test_nvm_versions_newest_first(self, tmp_path: Path) -> None:
        """Node versions installed by nvm should be listed newest first."""
        for version in ("v18.0.0", "v20.1.0"):
            (tmp_path / ".nvm" / "versions" / "node" / version / "bin").mkdir(parents=True)

        dirs = candidate_directories("linux", tmp_path, {})
        nvm = [d for d in dirs if ".nvm" in str(d)]

        assert nvm[0].parent.name == "v20.1.0"


class TestResolveCommand:
    """Tests for resolve_command."""

    def test_found_on_child_path(self, tmp_path: Path) -> None:
        """A command on the provider's PATH should be resolved there."""
        tool = make_executable(tmp_path / "bin", "mcp-tool")

        resolved, env = resolve_command("mcp-tool", {"PATH": str(tmp_path / "bin"), "TOKEN": "x"})

        assert resolved == str(tool)
        assert env["TOKEN"] == "x"
        assert env["PATH"].split(os.pathsep)[0] == str(tmp_path / "bin")

    def test_falls_back_to_known_directories(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """A command missing from PATH should be found in ~/.local/bin."""
        monkeypatch.setenv("PATH", str(tmp_path / "empty"))
        tool = make_executable(tmp_path / ".local" / "bin", "uvx-test-only")

        resolved, env = resolve_command("uvx-test-only", platform="linux", home=tmp_path)

        assert resolved == str(tool)
        assert env["PATH"].startswith(str(tool.parent))

    def test_explicit_path(self, tmp_path: Path) -> None:
        """A path-like command should be used as-is when it exists."""
        tool = make_executable(tmp_path, "server.sh")

        resolved, _ = resolve_command(str(tool))

        assert resolved == str(tool.resolve())

    def test_missing_command(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """An unknown command should raise FileNotFoundError."""
        monkeypatch.setenv("PATH", str(tmp_path))

        with pytest.raises(FileNotFoundError):
            resolve_command("definitely-not-installed-xyz", platform="linux", home=tmp_path)

    def test_missing_explicit_path(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            resolve_command(str(tmp_path / "nope.sh"))
