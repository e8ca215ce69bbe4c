"""
Tests for the deep packet inspection renderer
"""

import copy

import pytest

from fleet_operator.certs.bundle import TrustedBundle
from fleet_operator.certs.keypair import CertificateManagementSettings, KeyPair
from fleet_operator.core.config import OperatorSettings
from fleet_operator.core.exceptions import ConfigurationInvalidError
from fleet_operator.render import render
from fleet_operator.render.base import ResourceKey
from fleet_operator.render.common import InstallationSpec
from fleet_operator.render.dpi import DPIConfiguration, TyphaNodeTLS

from helpers import FleetTestConstants, make_secret, self_signed_certificate, self_signed_key_pair

DPI_NAMESPACE = "tigera-dpi"
DPI_NAME = "tigera-dpi"

CORE_IDENTITIES = {
    ResourceKey("Namespace", "", DPI_NAMESPACE),
    ResourceKey("ServiceAccount", DPI_NAMESPACE, DPI_NAME),
    ResourceKey("ClusterRole", "", DPI_NAME),
    ResourceKey("ClusterRoleBinding", "", DPI_NAME),
    ResourceKey("DaemonSet", DPI_NAMESPACE, DPI_NAME),
}


@pytest.fixture
def typha_node_tls():
    bundle = TrustedBundle.create(self_signed_certificate("typha-ca", "calico-system", "typha-ca"))
    node_secret = self_signed_key_pair("node-certs", FleetTestConstants.OPERATOR_NAMESPACE, ("calico-node",))
    return TyphaNodeTLS(trusted_bundle=bundle, node_secret=node_secret, typha_common_name="typha-server")


def dpi_config(typha_node_tls, **overrides):
    values = dict(
        installation=InstallationSpec(),
        typha_node_tls=typha_node_tls,
        settings=OperatorSettings(),
    )
    values.update(overrides)
    return DPIConfiguration(**values)


def daemon_set(result):
    return result.get("DaemonSet", DPI_NAME, DPI_NAMESPACE)


class TestDPIRendering:
    """Test the resource sets rendered for each license and resource state"""

    def test_active_renders_core_identities(self, typha_node_tls):
        """Test an active feature with no secrets renders exactly the core resources"""
        # Act
        result = render(dpi_config(typha_node_tls))

        # Assert
        assert set(result.create_keys()) == CORE_IDENTITIES
        assert len(result.to_create) == len(CORE_IDENTITIES)
        assert result.to_delete == ()
        assert result.create_keys()[0] == ResourceKey("Namespace", "", DPI_NAMESPACE)
        assert result.create_keys()[-1] == ResourceKey("DaemonSet", DPI_NAMESPACE, DPI_NAME)

    def test_no_license_deletes_everything(self, typha_node_tls):
        """Test an unlicensed feature moves the same identities into the delete set"""
        # Act
        result = render(dpi_config(typha_node_tls, has_no_license=True))

        # Assert
        assert result.to_create == ()
        assert set(result.delete_keys()) == CORE_IDENTITIES

    def test_no_resource_keeps_namespace(self, typha_node_tls):
        # Act
        result = render(dpi_config(None, has_no_dpi_resource=True))

        # Assert
        assert result.create_keys() == [ResourceKey("Namespace", "", DPI_NAMESPACE)]
        assert set(result.delete_keys()) == CORE_IDENTITIES - {ResourceKey("Namespace", "", DPI_NAMESPACE)}

    def test_secrets_copied_when_active(self, typha_node_tls, pull_secret):
        """Test pull and Elasticsearch secrets are copied into the DPI namespace"""
        # Arrange
        es_secret = make_secret("tigera-ee-intrusion-detection-elasticsearch-access",
                                FleetTestConstants.OPERATOR_NAMESPACE,
                                {"username": "dpi", "password": "secret"}, resourceVersion="42")

        # Act
        result = render(dpi_config(typha_node_tls, pull_secrets=[pull_secret], es_secrets=[es_secret]))

        # Assert
        copied = result.get("Secret", es_secret["metadata"]["name"], DPI_NAMESPACE)
        assert copied["data"] == es_secret["data"]
        assert "resourceVersion" not in copied["metadata"]
        assert result.get("Secret", FleetTestConstants.PULL_SECRET, DPI_NAMESPACE) is not None
        pod_spec = daemon_set(result)["spec"]["template"]["spec"]
        assert pod_spec["imagePullSecrets"] == [{"name": FleetTestConstants.PULL_SECRET}]

    def test_secret_copies_deleted_when_inactive(self, typha_node_tls, pull_secret):
        result = render(dpi_config(typha_node_tls, pull_secrets=[pull_secret], has_no_license=True))

        assert ResourceKey("Secret", DPI_NAMESPACE, FleetTestConstants.PULL_SECRET) in result.delete_keys()

    def test_rendering_is_pure(self, typha_node_tls, pull_secret):
        # Arrange
        before = copy.deepcopy(pull_secret)
        config = dpi_config(typha_node_tls, pull_secrets=[pull_secret])

        # Act
        first = render(config)
        second = render(config)

        # Assert
        assert first == second
        assert pull_secret == before


class TestDPIWorkload:
    """Test the DaemonSet pod template"""

    def test_certificate_rotation_changes_only_annotation(self, typha_node_tls):
        """Test re-rendering with rotated node material only changes the hash annotation"""
        # Arrange
        rotated_pair = self_signed_key_pair("node-certs", FleetTestConstants.OPERATOR_NAMESPACE, ("calico-node",))
        rotated = TyphaNodeTLS(trusted_bundle=typha_node_tls.trusted_bundle, node_secret=rotated_pair,
                               typha_common_name="typha-server")

        # Act
        before = render(dpi_config(typha_node_tls))
        after = render(dpi_config(rotated))

        # Assert
        annotation = "hash.operator.fleet.io/node-certs"
        before_ds = copy.deepcopy(daemon_set(before))
        after_ds = copy.deepcopy(daemon_set(after))
        assert before_ds["spec"]["template"]["metadata"]["annotations"][annotation] != \
            after_ds["spec"]["template"]["metadata"]["annotations"][annotation]
        del before_ds["spec"]["template"]["metadata"]["annotations"][annotation]
        del after_ds["spec"]["template"]["metadata"]["annotations"][annotation]
        assert before_ds == after_ds
        for key in before.create_keys():
            if key.kind != "DaemonSet":
                assert before.get(key.kind, key.name, key.namespace) == after.get(key.kind, key.name, key.namespace)

    def test_typha_environment(self, typha_node_tls):
        # Act
        container = daemon_set(render(dpi_config(typha_node_tls)))["spec"]["template"]["spec"]["containers"][0]

        # Assert
        env = {item["name"]: item.get("value") for item in container["env"]}
        assert env["DPI_TYPHACN"] == "typha-server"
        assert "DPI_TYPHAURISAN" not in env
        assert env["DPI_TYPHACAFILE"] == typha_node_tls.trusted_bundle.mount_path
        assert env["DPI_TYPHACERTFILE"] == "/node-certs/tls.crt"
        assert env["ELASTIC_HOST"] == "tigera-secure-es-gateway-http.tigera-elasticsearch.svc"

    def test_host_network_and_tolerations(self, typha_node_tls):
        pod_spec = daemon_set(render(dpi_config(typha_node_tls)))["spec"]["template"]["spec"]

        assert pod_spec["hostNetwork"] is True
        assert pod_spec["dnsPolicy"] == "ClusterFirstWithHostNet"
        assert {"operator": "Exists", "effect": "NoSchedule"} in pod_spec["tolerations"]
        assert "initContainers" not in pod_spec

    def test_openshift_runs_privileged(self, typha_node_tls):
        # Act
        result = render(dpi_config(typha_node_tls, installation=InstallationSpec(kubernetes_provider="OpenShift")))

        # Assert
        container = daemon_set(result)["spec"]["template"]["spec"]["containers"][0]
        assert container["securityContext"] == {"privileged": True}
        namespace = result.get("Namespace", DPI_NAMESPACE)
        assert namespace["metadata"]["annotations"] == {"openshift.io/node-selector": ""}

    def test_pod_security_policy_rule(self, typha_node_tls):
        """Test the PSP rule is granted only when enabled and not on OpenShift"""
        # Act
        enabled = render(dpi_config(typha_node_tls, settings=OperatorSettings(use_psp=True)))
        disabled = render(dpi_config(typha_node_tls))

        # Assert
        enabled_rules = enabled.get("ClusterRole", DPI_NAME)["rules"]
        assert any(rule["resources"] == ["podsecuritypolicies"] for rule in enabled_rules)
        assert len(disabled.get("ClusterRole", DPI_NAME)["rules"]) == len(enabled_rules) - 1

    def test_certificate_management_adds_init_container(self, external_ca_certificate):
        # Arrange
        management = CertificateManagementSettings(ca_cert=external_ca_certificate.certificate_pem)
        node_secret = KeyPair(name="node-certs", namespace=FleetTestConstants.OPERATOR_NAMESPACE,
                              certificate_pem=external_ca_certificate.certificate_pem,
                              dns_names=("calico-node",), certificate_management=management)
        tls = TyphaNodeTLS(trusted_bundle=TrustedBundle.create(external_ca_certificate), node_secret=node_secret)

        # Act
        result = render(dpi_config(tls, installation=InstallationSpec(certificate_management=management)))

        # Assert
        pod_spec = daemon_set(result)["spec"]["template"]["spec"]
        assert pod_spec["initContainers"][0]["image"].startswith("quay.io/tigera/key-cert-provisioner")
        assert {"name": "node-certs", "emptyDir": {}} in pod_spec["volumes"]


class TestDPIValidation:
    """Test configuration validation"""

    def test_active_requires_node_material(self):
        with pytest.raises(ConfigurationInvalidError):
            render(dpi_config(None))

    def test_inactive_needs_no_material(self):
        result = render(dpi_config(None, has_no_license=True))

        assert result.to_create == ()

    def test_invalid_replicas_rejected(self, typha_node_tls):
        with pytest.raises(ConfigurationInvalidError):
            render(dpi_config(typha_node_tls, installation=InstallationSpec(control_plane_replicas=0)))
