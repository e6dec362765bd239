from __future__ import annotations

import io
import zipfile
from typing import List
from unittest.mock import MagicMock

import pytest
import requests

from greengrass_provisioner.install_context import InstallStep
from greengrass_provisioner.installer import InstallationDriver, build_steps
from greengrass_provisioner.lib.command import CmdResult
from greengrass_provisioner.models import ConfigBundle
from greengrass_provisioner.settings import ProvisionerSettings
from greengrass_provisioner.steps.step_40_register_service import render_unit


class FakeRunner:
    """Records commands; answers ``systemctl is-active`` and ``id -u`` from canned values."""

    def __init__(self, *, active_states=("active",), user_exists=True, fail_on=None):
        self.calls: List[List[str]] = []
        self._states = list(active_states)
        self.user_exists = user_exists
        self.fail_on = fail_on

    def __call__(self, argv, *, check=True, dry_run=False, **kwargs):
        argv = list(argv)
        self.calls.append(argv)
        if self.fail_on and argv[: len(self.fail_on)] == self.fail_on:
            if check:
                raise RuntimeError(f"Command failed (1): {' '.join(argv)}")
            return CmdResult(argv=argv, returncode=1, stdout="", stderr="boom")
        if argv[:2] == ["id", "-u"]:
            return CmdResult(argv=argv, returncode=0 if self.user_exists else 1, stdout="", stderr="")
        if argv[:2] == ["systemctl", "is-active"]:
            state = self._states.pop(0) if len(self._states) > 1 else self._states[0]
            return CmdResult(argv=argv, returncode=0 if state == "active" else 3, stdout=state + "\n", stderr="")
        return CmdResult(argv=argv, returncode=0, stdout="", stderr="")

    def commands(self, prefix):
        return [c for c in self.calls if c[: len(prefix)] == prefix]


@pytest.fixture
def root(greengrass_root):
    (greengrass_root / "lib").mkdir()
    (greengrass_root / "logs").mkdir()
    (greengrass_root / "config").mkdir()
    return greengrass_root


@pytest.fixture
def bundle(root):
    return ConfigBundle(success=True, config_file_path=root / "config" / "config.yaml")


@pytest.fixture
def settings(tmp_path):
    units = tmp_path / "units"
    units.mkdir()
    return ProvisionerSettings(
        raw={
            "install": {
                "systemd_unit_dir": str(units),
                "java_home": "/opt/jdk",
                "log_wait_seconds": 0,
                "service_start_timeout_seconds": 5,
            }
        }
    )


def _progress_recorder():
    seen = []

    def cb(step, pct, msg):
        seen.append((step, pct, msg))

    return seen, cb


def test_dry_run_reports_every_step_in_order(root, bundle, identity):
    seen, cb = _progress_recorder()
    driver = InstallationDriver(ProvisionerSettings(raw={"dry_run": True}), progress=cb)

    result = driver.run(identity, bundle, root)

    assert result.success
    assert result.last_completed is InstallStep.COMPLETED
    assert result.service_name == "greengrass.service"
    assert [s for s, _, _ in seen] == [
        InstallStep.INITIALIZING,
        InstallStep.ACQUIRING_AGENT,
        InstallStep.INSTALLING_AGENT,
        InstallStep.REGISTERING_SERVICE,
        InstallStep.STARTING_SERVICE,
        InstallStep.VERIFYING_CONNECTION,
        InstallStep.COMPLETED,
    ]
    percents = [p for _, p, _ in seen]
    assert percents == sorted(percents)
    assert percents[-1] == 100
    # Placeholder nucleus instead of a download.
    assert (root / "lib" / "Greengrass.jar").is_file()


def test_dry_run_does_not_touch_host(root, bundle, identity, settings):
    raw = dict(settings.raw, dry_run=True)
    runner = FakeRunner()
    driver = InstallationDriver(ProvisionerSettings(raw=raw), runner=runner, sleep=lambda s: None)

    assert driver.run(identity, bundle, root).success
    assert not runner.commands(["useradd"])
    assert not runner.commands(["systemctl", "is-active"])
    assert not list((root.parent.parent / "units").iterdir())


def test_full_run_with_existing_account(root, bundle, identity, settings):
    (root / "lib" / "Greengrass.jar").write_bytes(b"jar")
    (root / "logs" / "greengrass.log").write_text("INFO MQTT connection established\n", encoding="utf-8")
    runner = FakeRunner(active_states=("activating", "active"))
    sleeps = []

    result = InstallationDriver(settings, runner=runner, sleep=sleeps.append).run(identity, bundle, root)

    assert result.success, result.error
    assert not runner.commands(["useradd"])
    assert runner.commands(["chown", "-R", "ggc_user:ggc_group"])
    assert runner.commands(["systemctl", "enable", "greengrass.service"])
    assert runner.commands(["systemctl", "stop", "greengrass.service"])
    assert len(runner.commands(["systemctl", "is-active"])) == 2
    assert sleeps == [1.0]

    unit = (root.parent.parent / "units" / "greengrass.service").read_text(encoding="utf-8")
    assert "Restart=on-failure" in unit
    assert "User=ggc_user" in unit
    assert 'Environment="JAVA_HOME=/opt/jdk"' in unit
    assert f"--config-path {root}/config/config.yaml" in unit


def test_creates_missing_account(root, bundle, identity, settings):
    (root / "lib" / "Greengrass.jar").write_bytes(b"jar")
    runner = FakeRunner(user_exists=False)

    assert InstallationDriver(settings, runner=runner).run(identity, bundle, root).success
    assert runner.commands(["groupadd", "--system", "ggc_group"])
    assert runner.commands(["useradd", "--system", "--gid", "ggc_group"])


def test_failure_keeps_last_completed_step(root, bundle, identity, settings):
    (root / "lib" / "Greengrass.jar").write_bytes(b"jar")
    runner = FakeRunner(fail_on=["systemctl", "daemon-reload"])
    seen, cb = _progress_recorder()

    result = InstallationDriver(settings, runner=runner, progress=cb).run(identity, bundle, root)

    assert not result.success
    assert result.last_completed is InstallStep.INSTALLING_AGENT
    assert "daemon-reload" in result.error
    assert seen[-1][0] is InstallStep.REGISTERING_SERVICE
    assert not runner.commands(["systemctl", "start"])


def test_failure_in_first_step_has_no_last_completed(root, bundle, identity, settings):
    runner = FakeRunner(user_exists=False, fail_on=["useradd"])

    result = InstallationDriver(settings, runner=runner).run(identity, bundle, root)

    assert not result.success
    assert result.last_completed is None
    assert "ggc_user" in result.error


def test_service_that_fails_to_start(root, bundle, identity, settings):
    (root / "lib" / "Greengrass.jar").write_bytes(b"jar")
    runner = FakeRunner(active_states=("failed",))

    result = InstallationDriver(settings, runner=runner, sleep=lambda s: None).run(identity, bundle, root)

    assert not result.success
    assert result.last_completed is InstallStep.REGISTERING_SERVICE
    assert "not active" in result.error


def test_error_markers_in_log_fail_verification(root, bundle, identity, settings):
    (root / "lib" / "Greengrass.jar").write_bytes(b"jar")
    (root / "logs" / "greengrass.log").write_text(
        "INFO starting\nERROR Failed to connect to AWS IoT\n", encoding="utf-8"
    )

    result = InstallationDriver(settings, runner=FakeRunner()).run(identity, bundle, root)

    assert not result.success
    assert result.last_completed is InstallStep.STARTING_SERVICE


def test_quiet_log_is_tolerated(root, bundle, identity, settings):
    (root / "lib" / "Greengrass.jar").write_bytes(b"jar")
    (root / "logs" / "greengrass.log").write_text("INFO launching nucleus\n", encoding="utf-8")

    assert InstallationDriver(settings, runner=FakeRunner()).run(identity, bundle, root).success


def test_missing_log_is_tolerated(root, bundle, identity, settings):
    (root / "lib" / "Greengrass.jar").write_bytes(b"jar")

    assert InstallationDriver(settings, runner=FakeRunner()).run(identity, bundle, root).success


def _nucleus_zip() -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("lib/Greengrass.jar", b"real-jar")
        zf.writestr("conf/recipe.yaml", "x")
    return buf.getvalue()


def _session_returning(payload: bytes, status: int = 200):
    resp = MagicMock()
    resp.__enter__.return_value = resp
    resp.iter_content.return_value = [payload]
    if status >= 400:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status}")
    session = MagicMock(spec=requests.Session)
    session.get.return_value = resp
    return session


def test_downloads_and_extracts_nucleus(root, bundle, identity, settings):
    session = _session_returning(_nucleus_zip())
    (root / "logs" / "greengrass.log").write_text("connected\n", encoding="utf-8")

    result = InstallationDriver(settings, runner=FakeRunner(), session=session).run(identity, bundle, root)

    assert result.success, result.error
    assert (root / "lib" / "Greengrass.jar").read_bytes() == b"real-jar"
    url = session.get.call_args[0][0]
    assert url.endswith("greengrass-2.9.0.zip")
    # Injected sessions belong to the caller.
    session.close.assert_not_called()


def test_download_failure_leaves_no_partial_file(root, bundle, identity, settings):
    session = _session_returning(b"", status=404)

    result = InstallationDriver(settings, runner=FakeRunner(), session=session).run(identity, bundle, root)

    assert not result.success
    assert result.last_completed is InstallStep.INITIALIZING
    assert sorted(p.name for p in (root / "lib").iterdir()) == []


def test_corrupt_archive(root, bundle, identity, settings):
    session = _session_returning(b"not a zip")

    result = InstallationDriver(settings, runner=FakeRunner(), session=session).run(identity, bundle, root)

    assert not result.success
    assert "corrupt" in result.error


def test_render_unit_without_java_home(tmp_path):
    unit = render_unit(
        root=tmp_path,
        config_path=tmp_path / "config" / "config.yaml",
        jar_path=tmp_path / "lib" / "Greengrass.jar",
        user="u",
        group="g",
        java_home=None,
    )
    assert "JAVA_HOME" not in unit
    assert "ExecStart=/usr/bin/java -Dlog.store=FILE" in unit
    assert unit.rstrip().endswith("WantedBy=multi-user.target")


def test_build_steps_order():
    assert [s.step for s in build_steps()] == [
        InstallStep.INITIALIZING,
        InstallStep.ACQUIRING_AGENT,
        InstallStep.INSTALLING_AGENT,
        InstallStep.REGISTERING_SERVICE,
        InstallStep.STARTING_SERVICE,
        InstallStep.VERIFYING_CONNECTION,
    ]
