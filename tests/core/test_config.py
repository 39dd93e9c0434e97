"""Tests for core configuration classes."""

from __future__ import annotations

from pathlib import Path

import pytest

from mirrorsync.core.config import MirrorConfig, TargetLocation
from mirrorsync.sync.types import InvalidConfigurationError


class TestTargetLocation:
    """Tests for TargetLocation.parse()."""

    def test_local_path(self, tmp_path: Path) -> None:
        """A plain path is a local target."""
        target = TargetLocation.parse(str(tmp_path / "backup"))
        assert not target.is_remote
        assert target.path == str(tmp_path / "backup")
        assert target.rsync_destination == f"{tmp_path / 'backup'}/"

    def test_remote_shorthand(self) -> None:
        """host:path is a remote target."""
        target = TargetLocation.parse("backup.example.com:/srv/mirror")
        assert target.is_remote
        assert target.host == "backup.example.com"
        assert target.user is None
        assert target.path == "/srv/mirror"
        assert target.rsync_destination == "backup.example.com:/srv/mirror/"

    def test_remote_with_user(self) -> None:
        """user@host:path keeps the user."""
        target = TargetLocation.parse("alice@nas:data")
        assert target.user == "alice"
        assert target.host == "nas"
        assert target.path == "data"

    def test_remote_home_directory(self) -> None:
        """host: alone targets the remote home directory."""
        target = TargetLocation.parse("nas:")
        assert target.is_remote
        assert target.rsync_destination == "nas:"

    def test_bracketed_ipv6(self) -> None:
        target = TargetLocation.parse("[fe80::1]:/srv")
        assert target.host == "[fe80::1]"
        assert target.path == "/srv"

    def test_rsync_url(self) -> None:
        """rsync:// URLs name a daemon module."""
        target = TargetLocation.parse("rsync://bob@mirror.local/module/sub/")
        assert target.is_remote
        assert target.host == "mirror.local"
        assert target.user == "bob"
        assert target.path == "module/sub/"
        assert target.rsync_destination == "rsync://bob@mirror.local/module/sub/"

    def test_single_letter_prefix_is_local(self) -> None:
        """A drive-letter-like prefix is not a host."""
        target = TargetLocation.parse("C:/backup")
        assert not target.is_remote

    def test_expands_user(self) -> None:
        target = TargetLocation.parse("~/backup")
        assert target.path == str(Path.home() / "backup")

    @pytest.mark.parametrize("descriptor", ["", "   "])
    def test_empty(self, descriptor: str) -> None:
        """An empty target is rejected."""
        with pytest.raises(InvalidConfigurationError, match="empty"):
            TargetLocation.parse(descriptor)

    def test_rsync_url_without_host(self) -> None:
        with pytest.raises(InvalidConfigurationError, match="no host"):
            TargetLocation.parse("rsync:///module")


class TestMirrorConfig:
    """Tests for MirrorConfig validation."""

    @pytest.fixture
    def source(self, tmp_path: Path) -> Path:
        path = tmp_path / "src"
        path.mkdir()
        return path

    def test_defaults(self, source: Path) -> None:
        """Should initialize with defaults and a parsed target."""
        config = MirrorConfig(source=source, target="nas:/srv")
        assert config.source == source.resolve()
        assert isinstance(config.target, TargetLocation)
        assert config.retry_delay == 1.0
        assert config.rsync_path == "rsync"
        assert config.reconcile is True
        assert config.watcher == "watchdog"

    def test_source_missing(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidConfigurationError, match="not a directory"):
            MirrorConfig(source=tmp_path / "missing", target="nas:/srv")

    def test_source_is_file(self, tmp_path: Path) -> None:
        path = tmp_path / "file.txt"
        path.write_text("x")
        with pytest.raises(InvalidConfigurationError, match="not a directory"):
            MirrorConfig(source=path, target="nas:/srv")

    def test_target_same_as_source(self, source: Path) -> None:
        with pytest.raises(InvalidConfigurationError, match="differ"):
            MirrorConfig(source=source, target=str(source))

    def test_target_inside_source(self, source: Path) -> None:
        """A target under the source would feed its own writes back."""
        with pytest.raises(InvalidConfigurationError, match="inside"):
            MirrorConfig(source=source, target=str(source / "mirror"))

    def test_sibling_target(self, source: Path, tmp_path: Path) -> None:
        config = MirrorConfig(source=source, target=str(tmp_path / "src-mirror"))
        assert not config.target.is_remote

    def test_negative_retry_delay(self, source: Path) -> None:
        with pytest.raises(InvalidConfigurationError, match="negative"):
            MirrorConfig(source=source, target="nas:/srv", retry_delay=-1.0)

    def test_unknown_watcher(self, source: Path) -> None:
        with pytest.raises(InvalidConfigurationError, match="Unknown watcher"):
            MirrorConfig(source=source, target="nas:/srv", watcher="fanotify")

    def test_command_watcher_needs_command(self, source: Path) -> None:
        with pytest.raises(InvalidConfigurationError, match="watch command"):
            MirrorConfig(source=source, target="nas:/srv", watcher="command")
