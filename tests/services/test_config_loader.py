import pytest

from kubepostupgrade.errors import PostUpgradeError
from kubepostupgrade.services.config_loader import ConfigLoader


def test_config_loader_loads_yaml_mapping(tmp_path):
    config_file = tmp_path / ".kube-postupgrade.yml"
    config_file.write_text(
        "version: v1.11.0\ndry_run: true\nnode_name: master-0\n",
        encoding="utf-8",
    )

    loader = ConfigLoader()
    loaded = loader.load(str(config_file))

    assert loaded["version"] == "v1.11.0"
    assert loaded["dry_run"] is True
    assert loaded["node_name"] == "master-0"


def test_config_loader_rejects_unknown_keys(tmp_path):
    config_file = tmp_path / ".kube-postupgrade.yml"
    config_file.write_text("unknown_key: true\n", encoding="utf-8")

    loader = ConfigLoader()

    with pytest.raises(PostUpgradeError, match="Unknown configuration keys"):
        loader.load(str(config_file))


def test_config_loader_rejects_non_mapping_root(tmp_path):
    config_file = tmp_path / ".kube-postupgrade.yml"
    config_file.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(PostUpgradeError, match="YAML mapping"):
        ConfigLoader().load(str(config_file))


def test_config_loader_treats_empty_file_and_missing_path_as_empty(tmp_path):
    config_file = tmp_path / ".kube-postupgrade.yml"
    config_file.write_text("", encoding="utf-8")

    assert ConfigLoader().load(str(config_file)) == {}
    assert ConfigLoader().load(None) == {}


def test_config_loader_reports_missing_file(tmp_path):
    with pytest.raises(PostUpgradeError, match="Config file not found"):
        ConfigLoader().load(str(tmp_path / "missing.yml"))


def test_build_cluster_configuration_applies_overrides():
    loader = ConfigLoader()

    cfg = loader.build_cluster_configuration(
        {
            "version": "1.10.0",
            "node_name": 42,
            "feature_gates": {"CoreDNS": True},
            "api_server_cert_sans": ["lb.example.com"],
        },
        kubernetes_version="1.11.0",
        advertise_address=None,
    )

    assert cfg.node_name == "42"
    assert cfg.kubernetes_version == "1.11.0"
    assert cfg.feature_enabled("CoreDNS") is True
    assert cfg.api_server_cert_sans == ("lb.example.com",)
    assert cfg.advertise_address is None


def test_build_cluster_configuration_rejects_non_boolean_gates():
    with pytest.raises(PostUpgradeError, match="Feature gates must be true or false: CoreDNS"):
        ConfigLoader().build_cluster_configuration({"feature_gates": {"CoreDNS": "yes"}})


def test_build_cluster_configuration_rejects_bad_sans():
    with pytest.raises(PostUpgradeError, match="must be a list of strings"):
        ConfigLoader().build_cluster_configuration({"api_server_cert_sans": "lb.example.com"})


def test_build_cluster_configuration_rejects_non_mapping_kubelet_config():
    with pytest.raises(PostUpgradeError, match="`kubelet_config` must be a mapping"):
        ConfigLoader().build_cluster_configuration({"kubelet_config": ["x"]})
