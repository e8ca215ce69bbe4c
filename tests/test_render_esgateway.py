"""
Tests for the Elasticsearch gateway renderer
"""

import base64

import pytest

from fleet_operator.certs.bundle import TrustedBundle
from fleet_operator.certs.keypair import CertificateManagementSettings, KeyPair
from fleet_operator.core.exceptions import ConfigurationInvalidError
from fleet_operator.render import render
from fleet_operator.render.base import ResourceKey
from fleet_operator.render.common import InstallationSpec
from fleet_operator.render.esgateway import EsGatewayConfiguration

from helpers import FleetTestConstants, make_secret, self_signed_certificate, self_signed_key_pair

NAMESPACE = "tigera-elasticsearch"
NAME = "tigera-secure-es-gateway"


@pytest.fixture
def key_pair():
    return self_signed_key_pair("tigera-secure-elasticsearch-cert", NAMESPACE, ("tigera-secure-es-gateway-http",))


@pytest.fixture
def bundle():
    return TrustedBundle.create(self_signed_certificate("es-ca", NAMESPACE, "es-ca"))


def gateway_deployment(key_pair, bundle, **installation):
    config = EsGatewayConfiguration(installation=InstallationSpec(**installation),
                                    key_pair=key_pair, trusted_bundle=bundle)
    return render(config).get("Deployment", NAME, NAMESPACE)


class TestEsGatewayRendering:
    """Test the gateway resource set"""

    def test_resources_in_tier_order(self, key_pair, bundle, pull_secret):
        # Arrange
        config = EsGatewayConfiguration(installation=InstallationSpec(), key_pair=key_pair,
                                        trusted_bundle=bundle, pull_secrets=[pull_secret])

        # Act
        result = render(config)

        # Assert
        kinds = [key.kind for key in result.create_keys()]
        assert kinds.index("ServiceAccount") < kinds.index("Role") < kinds.index("RoleBinding")
        assert kinds.index("RoleBinding") < kinds.index("Service") < kinds.index("Deployment")
        assert result.to_delete == ()

    def test_public_certificate_secret(self, key_pair, bundle):
        """Test the public certificate is published without the private key"""
        result = render(EsGatewayConfiguration(installation=InstallationSpec(), key_pair=key_pair,
                                               trusted_bundle=bundle))

        secret = result.get("Secret", "tigera-secure-es-gateway-http-certs-public",
                            FleetTestConstants.OPERATOR_NAMESPACE)

        assert base64.b64decode(secret["data"]["tls.crt"]) == key_pair.certificate_pem
        assert "tls.key" not in secret["data"]

    def test_user_secrets_keep_their_namespace(self, key_pair, bundle):
        # Arrange
        user_secret = make_secret("tigera-ee-dpi-elasticsearch-access", "tigera-dpi", {"username": "dpi"})

        # Act
        result = render(EsGatewayConfiguration(installation=InstallationSpec(), key_pair=key_pair,
                                               trusted_bundle=bundle, user_secrets=[user_secret]))

        # Assert
        assert ResourceKey("Secret", "tigera-dpi", "tigera-ee-dpi-elasticsearch-access") in result.create_keys()
        deployment = result.get("Deployment", NAME, NAMESPACE)
        annotations = deployment["spec"]["template"]["metadata"]["annotations"]
        assert "hash.operator.fleet.io/tigera-ee-dpi-elasticsearch-access" in annotations

    def test_requires_key_pair_and_bundle(self, key_pair, bundle):
        with pytest.raises(ConfigurationInvalidError):
            render(EsGatewayConfiguration(installation=InstallationSpec(), trusted_bundle=bundle))
        with pytest.raises(ConfigurationInvalidError):
            render(EsGatewayConfiguration(installation=InstallationSpec(), key_pair=key_pair))


class TestEsGatewayScheduling:
    """Test replicas, affinity and placement"""

    def test_single_replica_has_no_affinity(self, key_pair, bundle):
        deployment = gateway_deployment(key_pair, bundle, control_plane_replicas=1)

        assert deployment["spec"]["replicas"] == 1
        assert "affinity" not in deployment["spec"]["template"]["spec"]

    @pytest.mark.parametrize("replicas", [2, 3])
    def test_multiple_replicas_spread_across_hosts(self, key_pair, bundle, replicas):
        # Act
        deployment = gateway_deployment(key_pair, bundle, control_plane_replicas=replicas)

        # Assert
        assert deployment["spec"]["replicas"] == replicas
        affinity = deployment["spec"]["template"]["spec"]["affinity"]
        term = affinity["podAntiAffinity"]["preferredDuringSchedulingIgnoredDuringExecution"][0]
        assert term["podAffinityTerm"]["topologyKey"] == "kubernetes.io/hostname"
        assert term["podAffinityTerm"]["labelSelector"]["matchExpressions"][0]["values"] == [NAME]

    def test_node_selector_and_tolerations(self, key_pair, bundle):
        # Arrange
        toleration = {"key": "dedicated", "operator": "Equal", "value": "infra", "effect": "NoSchedule"}

        # Act
        deployment = gateway_deployment(key_pair, bundle, control_plane_node_selector={"role": "infra"},
                                        control_plane_tolerations=(toleration,))

        # Assert
        pod_spec = deployment["spec"]["template"]["spec"]
        assert pod_spec["nodeSelector"] == {"role": "infra"}
        assert pod_spec["tolerations"] == [toleration]
        assert pod_spec["tolerations"][0] is not toleration

    def test_registry_override(self, key_pair, bundle):
        deployment = gateway_deployment(key_pair, bundle, registry="mirror.local")

        image = deployment["spec"]["template"]["spec"]["containers"][0]["image"]
        assert image == "mirror.local/tigera/es-gateway:v3.15.0"

    def test_certificate_management_init_container(self, external_ca_certificate, bundle):
        """Test externally issued material is requested by an init container"""
        # Arrange
        management = CertificateManagementSettings(ca_cert=external_ca_certificate.certificate_pem)
        key_pair = KeyPair(name="tigera-secure-elasticsearch-cert", namespace=NAMESPACE,
                           certificate_pem=external_ca_certificate.certificate_pem,
                           dns_names=("tigera-secure-es-gateway-http",), certificate_management=management)

        # Act
        deployment = gateway_deployment(key_pair, bundle, certificate_management=management)

        # Assert
        pod_spec = deployment["spec"]["template"]["spec"]
        init = pod_spec["initContainers"][0]
        env = {item["name"]: item.get("value") for item in init["env"]}
        assert env["APP_NAME"] == NAME
        assert env["DNS_NAMES"] == "tigera-secure-es-gateway-http"
        assert {"name": "tigera-secure-elasticsearch-cert", "emptyDir": {}} in pod_spec["volumes"]
