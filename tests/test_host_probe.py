"""Tests for distribution detection and the runtime probe."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import pytest
from conftest import FakeProcess

from joplinctl.host import HostProbe, detect_distro, parse_os_release
from joplinctl.installers import RuntimeInstallError

UBUNTU = """\
NAME="Ubuntu"
VERSION_ID="22.04"
ID=ubuntu
ID_LIKE=debian
VERSION_CODENAME=jammy
"""


def test_parse_os_release_handles_quotes() -> None:
    """Quoted values are unquoted and comments ignored."""
    fields = parse_os_release('# comment\nID="rocky"\nID_LIKE="rhel centos fedora"\n')

    assert fields == {"ID": "rocky", "ID_LIKE": "rhel centos fedora"}


def test_detect_distro_reads_fields(os_release) -> None:
    """ID, ID_LIKE, VERSION_ID and codename populate the profile."""
    profile = detect_distro(os_release(UBUNTU))

    assert profile.id == "ubuntu"
    assert profile.id_like == ("debian",)
    assert profile.version_id == "22.04"
    assert profile.codename == "jammy"


def test_detect_distro_missing_file(tmp_path: Path) -> None:
    """A missing os-release yields an empty id."""
    assert detect_distro(tmp_path / "absent").id == ""


def test_runtime_healthy(fake_process: FakeProcess) -> None:
    """A responding daemon needs no start attempt."""
    status = HostProbe(fake_process).detect_runtime()

    assert status.present and status.healthy
    assert not fake_process.ran("systemctl", "start", "docker")


def test_runtime_absent() -> None:
    """Without the docker CLI the runtime is reported absent."""
    runner = FakeProcess()
    status = HostProbe(runner).detect_runtime()

    assert status.present is False
    assert status.healthy is False
    assert runner.calls == []


def test_runtime_started_once_when_daemon_down(fake_process: FakeProcess) -> None:
    """A stopped daemon gets exactly one start attempt."""
    fake_process.script("docker", "info", returncode=1, stderr="Cannot connect", times=1)

    status = HostProbe(fake_process).detect_runtime()

    assert status.healthy is True
    assert status.started is True
    assert len(fake_process.matching("systemctl", "start", "docker")) == 1


def test_ensure_runtime_skips_install_when_healthy(fake_process: FakeProcess) -> None:
    """A healthy runtime is left alone."""
    result = HostProbe(fake_process).ensure_runtime()

    assert result.installed is False
    assert not fake_process.ran("apt-get")


def test_ensure_runtime_installs_on_debian(tmp_path: Path, os_release) -> None:
    """A host without docker installs through the Debian family installer."""
    runner = FakeProcess()
    runner.script("curl", stdout="-----BEGIN PGP PUBLIC KEY BLOCK-----\n")
    runner.script("dpkg", "--print-architecture", stdout="amd64\n")
    keyring = tmp_path / "root" / "etc" / "apt" / "keyrings" / "docker.gpg"
    keyring.parent.mkdir(parents=True)
    keyring.write_bytes(b"dearmored")

    probe = HostProbe(
        runner,
        os_release=os_release("ID=debian\nVERSION_CODENAME=bookworm\n"),
        fs_root=tmp_path / "root",
    )
    result = probe.ensure_runtime()

    assert result.installed is True
    assert result.family == "debian"
    assert runner.ran("apt-get", "install", "-y", "docker-ce")
    assert runner.index("systemctl", "enable", "--now", "docker") < len(runner.calls) - 1
    assert runner.calls[-1] == ["docker", "info"]


def test_ensure_runtime_unsupported_distro(os_release) -> None:
    """An unknown distribution with no known ancestor aborts with instructions."""
    runner = FakeProcess()
    probe = HostProbe(runner, os_release=os_release("ID=gentoo\n"))

    with pytest.raises(RuntimeInstallError, match="Unsupported distro \\(gentoo\\)"):
        probe.ensure_runtime()


def test_ensure_runtime_daemon_still_down(tmp_path: Path, os_release) -> None:
    """Install success with a silent daemon is still a failure."""
    runner = FakeProcess()
    runner.script("docker", "info", returncode=1)

    probe = HostProbe(runner, os_release=os_release("ID=arch\n"), fs_root=tmp_path)

    with pytest.raises(RuntimeInstallError, match="Docker daemon not available after install"):
        probe.ensure_runtime()


@dataclass
class _FreshHost(FakeProcess):
    """A host without docker that gains the CLI once the daemon is enabled."""

    def run(self, args: Sequence[str], **kwargs: object):  # type: ignore[override]
        result = super().run(args, **kwargs)  # type: ignore[arg-type]
        if list(args) == ["systemctl", "enable", "--now", "docker"]:
            self.paths["docker"] = "/usr/bin/docker"
        return result


@pytest.mark.parametrize(
    ("release", "managers", "family", "install_command"),
    [
        (
            'ID="rhel"\nID_LIKE="fedora"\nVERSION_ID="9.3"\n',
            ("dnf",),
            "rhel",
            ("dnf", "-y", "install", "docker-ce"),
        ),
        (
            "ID=fedora\nVERSION_ID=40\n",
            ("dnf",),
            "rhel",
            ("dnf", "-y", "install", "docker-ce"),
        ),
        (
            'ID="centos"\nID_LIKE="rhel fedora"\nVERSION_ID="7"\n',
            ("yum",),
            "rhel",
            ("yum", "-y", "install", "docker-ce"),
        ),
        (
            'ID="opensuse-leap"\nID_LIKE="suse opensuse"\nVERSION_ID="15.5"\n',
            (),
            "suse",
            ("zypper", "--non-interactive", "install", "-y", "docker"),
        ),
        (
            'ID="sles"\nVERSION_ID="15.5"\n',
            (),
            "suse",
            ("zypper", "--non-interactive", "install", "-y", "docker"),
        ),
        (
            "ID=arch\n",
            (),
            "arch",
            ("pacman", "-Sy", "--noconfirm", "docker"),
        ),
    ],
)
def test_fresh_host_reaches_healthy_runtime(
    tmp_path: Path,
    os_release,
    release: str,
    managers: tuple[str, ...],
    family: str,
    install_command: tuple[str, ...],
) -> None:
    """Each family goes from no runtime to a healthy one through its installer."""
    runner = _FreshHost(paths={name: f"/usr/bin/{name}" for name in managers})
    probe = HostProbe(runner, os_release=os_release(release), fs_root=tmp_path)

    assert probe.detect_runtime().present is False

    result = probe.ensure_runtime()

    assert result.installed is True
    assert result.family == family
    assert runner.ran(*install_command)
    assert runner.index(*install_command) < runner.index("systemctl", "enable", "--now", "docker")
    status = probe.detect_runtime()
    assert status.present is True
    assert status.healthy is True
    assert status.started is False
