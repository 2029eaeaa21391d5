"""End-to-end tests for deployer commands against fake executors."""

import pytest

from gmatch_deploy.deployer import Deployer
from gmatch_deploy.errors import (
    ApplyFailed,
    InvalidTarget,
    PreconditionMissing,
    RollbackFailed,
    StageFailed,
    StageTimedOut,
)
from gmatch_deploy.executor.base import DeploymentResult, ProbeState


@pytest.fixture
def deployer(config, cluster, releases, waiter):
    return Deployer(config, cluster=cluster, releases=releases, waiter=waiter)


class TestDeploy:
    @pytest.mark.asyncio
    async def test_django_with_tag_migrates_then_rolls_out(self, deployer, cluster, capsys):
        plan = await deployer.deploy("django", "sha-abc123")

        assert plan.stage_ids == ["migrate", "web"]
        assert cluster.mutations() == [
            ("delete", "job/g-match-migrate"),
            ("apply", "/manifests/migration-job.yaml"),
            ("set_image", "job/g-match-migrate", {"migrate": "ghcr.io/ysa5347/g-match-backend:sha-abc123"}),
            (
                "set_image",
                "deployment/g-match-web",
                {
                    "django": "ghcr.io/ysa5347/g-match-backend:sha-abc123",
                    "django-collectstatic": "ghcr.io/ysa5347/g-match-backend:sha-abc123",
                },
            ),
        ]
        assert "Deployment Status" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_all_ensures_namespace_first(self, deployer, cluster):
        await deployer.deploy("all")

        assert cluster.calls[0] == ("ensure_namespace",)

    @pytest.mark.asyncio
    async def test_tag_as_selector_deploys_everything(self, deployer, cluster):
        plan = await deployer.deploy("v1.2.3")

        assert plan.stage_ids == ["infra", "migrate", "web", "matcher"]
        assert ("set_image", "deployment/g-match-scheduler", {"scheduler": "ghcr.io/ysa5347/g-match-backend-matcher:v1.2.3"}) in cluster.calls

    @pytest.mark.asyncio
    async def test_invalid_target_before_mutation(self, deployer, cluster):
        with pytest.raises(InvalidTarget):
            await deployer.deploy("frontend", "v1")
        assert cluster.calls == []

    @pytest.mark.asyncio
    async def test_missing_kubectl_is_precondition(self, deployer, cluster):
        cluster.available = False

        with pytest.raises(PreconditionMissing):
            await deployer.deploy("matcher")
        assert cluster.calls == []

    @pytest.mark.asyncio
    async def test_migration_failure_aborts_and_dumps_logs(self, deployer, cluster, releases, capsys):
        releases.add_revision(1, "deployed")
        cluster.set_probes("job/g-match-migrate", ProbeState.FAILED)
        cluster.logs["job/g-match-migrate"] = "Traceback: migration 0042 failed"

        with pytest.raises(StageFailed):
            await deployer.deploy("django", "sha-abc123")

        assert not any(c[0] == "rollback" for c in releases.calls)
        assert not any(c[1] == "deployment/g-match-web" for c in cluster.calls)
        assert "migration 0042 failed" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_application_timeout_reverts_exactly_once(self, deployer, cluster, releases):
        releases.add_revision(1, "superseded")
        releases.add_revision(2, "deployed")
        cluster.set_probes("deployment/g-match-web", ProbeState.PROGRESSING)

        with pytest.raises(StageTimedOut):
            await deployer.deploy("django", "sha-bad")

        assert [c for c in releases.calls if c[0] == "rollback"] == [("rollback", 2, 600)]

    @pytest.mark.asyncio
    async def test_failed_rollback_is_not_retried(self, deployer, cluster, releases):
        releases.add_revision(1, "deployed")
        releases.rollback_result = DeploymentResult(status="failed", error="boom")
        cluster.set_probes("deployment/g-match-edge-calculator", ProbeState.FAILED)

        with pytest.raises(RollbackFailed) as exc_info:
            await deployer.deploy("matcher", "v9")

        assert len([c for c in releases.calls if c[0] == "rollback"]) == 1
        assert exc_info.value.snapshot is not None

    @pytest.mark.asyncio
    async def test_application_failure_without_history_aborts(self, deployer, cluster, releases):
        cluster.set_probes("deployment/g-match-web", ProbeState.FAILED)

        with pytest.raises(StageFailed):
            await deployer.deploy("web", "v2")

        assert not any(c[0] == "rollback" for c in releases.calls)

    @pytest.mark.asyncio
    async def test_rejected_apply_raises_apply_failed(self, deployer, cluster):
        cluster.apply_errors["/manifests/redis.yaml"] = "forbidden"

        with pytest.raises(ApplyFailed):
            await deployer.deploy("redis")


class TestHelmCommands:
    @pytest.mark.asyncio
    async def test_install_requires_values_file(self, deployer, config, releases):
        config.values_file = "/nonexistent/values-secret.yaml"

        with pytest.raises(PreconditionMissing):
            await deployer.install()
        assert releases.calls == []

    @pytest.mark.asyncio
    async def test_install(self, deployer, config, releases):
        await deployer.install()

        assert releases.calls[0] == ("install", "/charts/g-match", config.values_file)

    @pytest.mark.asyncio
    async def test_upgrade_twice_same_tag_is_idempotent(self, deployer, releases):
        first = await deployer.upgrade("sha-abc123")
        values_after_first = dict(releases.values)
        second = await deployer.upgrade("sha-abc123")

        assert first.ok and second.ok
        assert releases.values == values_after_first == {
            "django.image.tag": "sha-abc123",
            "matcher.image.tag": "sha-abc123",
        }

    @pytest.mark.asyncio
    async def test_upgrade_without_tag_reuses_values(self, deployer, releases):
        await deployer.upgrade()

        assert ("upgrade", "/charts/g-match", {}) in releases.calls

    @pytest.mark.asyncio
    async def test_failed_upgrade_reverts_to_previous(self, deployer, releases):
        releases.add_revision(1, "superseded")
        releases.add_revision(2, "deployed")
        releases.upgrade_result = DeploymentResult(status="failed", error="timed out waiting for the condition")

        with pytest.raises(StageFailed):
            await deployer.upgrade("sha-bad")

        assert [c for c in releases.calls if c[0] == "rollback"] == [("rollback", 2, 600)]

    @pytest.mark.asyncio
    async def test_rollback_without_revision_prints_history(self, deployer, cluster, releases, capsys):
        releases.add_revision(1, "superseded")
        releases.add_revision(2, "deployed")

        with pytest.raises(PreconditionMissing):
            await deployer.rollback()

        assert "REVISION" in capsys.readouterr().out
        assert not any(c[0] == "rollback" for c in releases.calls)
        assert cluster.mutations() == []

    @pytest.mark.asyncio
    async def test_rollback_to_revision(self, deployer, releases):
        releases.add_revision(1, "deployed")

        await deployer.rollback(1)

        assert ("rollback", 1, 600) in releases.calls

    @pytest.mark.asyncio
    async def test_status_without_release(self, deployer, releases):
        releases.installed = False

        snapshot = await deployer.status()

        assert snapshot.release is None
        assert "pods" in snapshot.resources

    @pytest.mark.asyncio
    async def test_template_prints_rendered(self, deployer, capsys):
        rendered = await deployer.template()

        assert "kind: Deployment" in rendered
        assert "kind: Deployment" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_uninstall(self, deployer, releases):
        await deployer.uninstall()

        assert ("uninstall",) in releases.calls
