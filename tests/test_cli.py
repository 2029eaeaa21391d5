"""Tests for the command-line entry point and exit codes."""

import pytest

from gmatch_deploy import __main__ as cli
from gmatch_deploy.deployer import Deployer
from gmatch_deploy.errors import CommandError
from gmatch_deploy.executor.base import ProbeState


@pytest.fixture
def fake_deployer(monkeypatch, config, cluster, releases, waiter):
    """Patch the CLI so it builds a Deployer on the fakes."""
    created = {}

    def factory(cfg):
        cfg = cfg.model_copy(
            update={"values_file": config.values_file, "manifests_dir": config.manifests_dir}
        )
        deployer = Deployer(cfg, cluster=cluster, releases=releases, waiter=waiter)
        created["deployer"] = deployer
        return deployer

    monkeypatch.setattr(cli, "Deployer", factory)
    return created


def test_django_with_tag_exits_zero(fake_deployer, cluster):
    assert cli.main(["django", "sha-abc123"]) == 0
    assert ("set_image", "deployment/g-match-web", {
        "django": "ghcr.io/ysa5347/g-match-backend:sha-abc123",
        "django-collectstatic": "ghcr.io/ysa5347/g-match-backend:sha-abc123",
    }) in cluster.calls


def test_migration_failure_exits_one(fake_deployer, cluster):
    cluster.set_probes("job/g-match-migrate", ProbeState.FAILED)

    assert cli.main(["migrate"]) == 1


def test_rollback_without_revision_exits_one(fake_deployer, releases, capsys):
    releases.add_revision(1, "deployed")

    assert cli.main(["rollback"]) == 1
    assert "REVISION" in capsys.readouterr().out
    assert not any(c[0] == "rollback" for c in releases.calls)


def test_rollback_revision_must_be_numeric(fake_deployer):
    assert cli.main(["rollback", "latest"]) == 1


def test_missing_values_file_exits_one(fake_deployer, config, releases, tmp_path):
    config.values_file = str(tmp_path / "missing.yaml")

    assert cli.main(["template"]) == 1
    assert releases.calls == []


def test_status_without_release_exits_zero(fake_deployer, releases, capsys):
    releases.installed = False

    assert cli.main(["status"]) == 0
    assert "WARNING" in capsys.readouterr().out


def test_unknown_target_with_tag_exits_one(fake_deployer, cluster):
    assert cli.main(["frontend", "v1"]) == 1
    assert cluster.calls == []


def test_no_auto_rollback_flag(fake_deployer):
    cli.main(["--no-auto-rollback", "--namespace", "staging", "status"])

    config = fake_deployer["deployer"].config
    assert config.auto_rollback is False
    assert config.namespace == "staging"


def test_namespace_creation_refused_exits_one(fake_deployer, cluster):
    cluster.namespace_error = 'namespaces is forbidden: User "ci" cannot create resource'

    assert cli.main(["all"]) == 1
    assert cluster.mutations() == []


def test_command_error_exits_one(fake_deployer, monkeypatch):
    async def failing_dispatch(deployer, command, argument):
        raise CommandError(["helm", "uninstall"], 1, "timed out after 600s")

    monkeypatch.setattr(cli, "dispatch", failing_dispatch)

    assert cli.main(["uninstall"]) == 1
