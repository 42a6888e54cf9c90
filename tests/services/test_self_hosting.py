import io
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from packaging.version import Version
from rich.console import Console
from urllib3.exceptions import MaxRetryError

import kubepostupgrade.services.cluster_client as cluster_client_module
from kubepostupgrade.errors import PostUpgradeError
from kubepostupgrade.models import ClusterConfiguration, UpgradeContext
from kubepostupgrade.services.cluster_client import ClusterClient
from kubepostupgrade.services.self_hosting import DryRunWaiter, KubeWaiter, SelfHostingUpgradeGate


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None


def make_context(phases, enabled=True, dry_run=False):
    gates = {"SelfHosting": True} if enabled else {}
    return UpgradeContext(
        phases=phases,
        cluster_config=ClusterConfiguration(feature_gates=gates),
        target_version=Version("1.11.0"),
        dry_run=dry_run,
    )


def make_gate(**kwargs):
    return SelfHostingUpgradeGate(logger=DummyLogger(), console=Console(file=io.StringIO()), **kwargs)


def test_gate_does_nothing_when_feature_is_disabled(fake_phases_factory):
    phases = fake_phases_factory()

    assert make_gate().maybe_convert(make_context(phases, enabled=False)) is False
    assert phases.calls == []


def test_gate_converts_once_across_runs(fake_phases_factory):
    phases = fake_phases_factory()
    gate = make_gate(waiter_factory=lambda _ctx: "waiter")
    ctx = make_context(phases)

    assert gate.maybe_convert(ctx) is True
    assert gate.maybe_convert(ctx) is False

    assert phases.args_of("convert_to_self_hosted") == [
        ("/etc/kubernetes/manifests", "/etc/kubernetes", ctx.cluster_config, "waiter", False)
    ]


def test_gate_skips_already_self_hosted_control_plane(fake_phases_factory):
    phases = fake_phases_factory(self_hosted=True)

    assert make_gate().maybe_convert(make_context(phases)) is False
    assert phases.args_of("convert_to_self_hosted") == []


def test_gate_wraps_conversion_errors(fake_phases_factory):
    phases = fake_phases_factory(failures={"convert_to_self_hosted": PostUpgradeError("apiserver down")})

    with pytest.raises(PostUpgradeError, match="error creating self hosted control plane: apiserver down"):
        make_gate(waiter_factory=lambda _ctx: None).maybe_convert(make_context(phases))


def test_default_waiter_depends_on_dry_run(fake_phases_factory):
    gate = make_gate()
    phases = fake_phases_factory()
    phases.cluster_client = MagicMock()

    assert isinstance(gate.default_waiter(make_context(phases, dry_run=True)), DryRunWaiter)
    waiter = gate.default_waiter(make_context(phases))
    assert isinstance(waiter, KubeWaiter)
    assert waiter.cluster_client is phases.cluster_client
    assert waiter.timeout == timedelta(minutes=30)


def test_kube_waiter_times_out_with_last_error():
    now = {"value": 0.0}
    cluster_client = MagicMock()
    cluster_client.server_version.side_effect = PostUpgradeError("connection refused")

    def sleep(seconds):
        now["value"] += seconds

    waiter = KubeWaiter(
        cluster_client,
        DummyLogger(),
        timeout=timedelta(seconds=10),
        poll_seconds=2.0,
        clock=lambda: now["value"],
        sleep=sleep,
    )

    with pytest.raises(PostUpgradeError, match="timed out after 0:00:10 waiting for the API server: connection refused"):
        waiter.wait_for_api()

    assert cluster_client.server_version.call_count == 6


def test_kube_waiter_keeps_polling_while_api_server_refuses_connections(monkeypatch):
    version_api = MagicMock()
    version_api.get_code.side_effect = [
        MaxRetryError(None, "/version", reason="connection refused"),
        MagicMock(git_version="v1.11.0"),
    ]
    monkeypatch.setattr(cluster_client_module.client, "VersionApi", lambda _api_client: version_api)
    sleeps = []
    waiter = KubeWaiter(
        ClusterClient(api_client=MagicMock()), DummyLogger(), clock=lambda: 0.0, sleep=sleeps.append
    )

    waiter.wait_for_api()

    assert version_api.get_code.call_count == 2
    assert sleeps == [2.0]


def test_kube_waiter_waits_until_pods_are_running():
    cluster_client = MagicMock()
    cluster_client.list_pod_phases.side_effect = [[], ["Pending"], ["Running", "Running"]]
    sleeps = []
    waiter = KubeWaiter(cluster_client, DummyLogger(), clock=lambda: 0.0, sleep=sleeps.append)

    waiter.wait_for_pods_with_label("k8s-app=self-hosted-kube-apiserver")

    assert len(sleeps) == 2
    cluster_client.list_pod_phases.assert_called_with("kube-system", "k8s-app=self-hosted-kube-apiserver")


def test_kube_waiter_timeout_can_be_changed():
    waiter = KubeWaiter(MagicMock(), DummyLogger())

    waiter.set_timeout(timedelta(minutes=5))

    assert waiter.timeout == timedelta(minutes=5)
