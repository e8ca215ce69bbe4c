"""
End-to-end tests for the feature controllers against the in-memory cluster
"""

import pytest

from fleet_operator.controllers import (
    ClusterConnectionController,
    DPIController,
    OutcomeState,
    ReconcileRequest,
    WorkQueue,
)
from fleet_operator.core.constants import ErrorMessages

from helpers import FakeClock, FleetTestConstants, make_secret, self_signed_key_pair

OPERATOR_NAMESPACE = FleetTestConstants.OPERATOR_NAMESPACE
REQUEST = ReconcileRequest("default")


def installation(variant="TigeraSecureEnterprise"):
    return {
        "apiVersion": "operator.tigera.io/v1",
        "kind": "Installation",
        "metadata": {"name": "default"},
        "spec": {
            "variant": variant,
            "controlPlaneReplicas": 1,
            "imagePullSecrets": [{"name": FleetTestConstants.PULL_SECRET}],
        },
    }


def license_key(*features):
    return {
        "apiVersion": "projectcalico.org/v3",
        "kind": "LicenseKey",
        "metadata": {"name": "default"},
        "status": {"features": list(features)},
    }


def certificate_secret(name):
    key_pair = self_signed_key_pair(name, OPERATOR_NAMESPACE, (name,))
    secret = key_pair.secret(OPERATOR_NAMESPACE)
    del secret["data"]["tls.key"]
    return secret


def mark_available(client, kind, name, namespace, status):
    workload = client.get("apps/v1", kind, name, namespace)
    workload["status"] = status
    client.seed(workload)


@pytest.fixture
def dpi_cluster(client, pull_secret):
    client.seed(installation())
    client.seed(license_key("dpi"))
    client.seed(pull_secret)
    client.seed({"apiVersion": "crd.projectcalico.org/v1", "kind": "DeepPacketInspection",
                 "metadata": {"name": "sample", "namespace": "workloads"}})
    node_certs = self_signed_key_pair("node-certs", OPERATOR_NAMESPACE, ("calico-node",))
    client.seed(node_certs.secret(OPERATOR_NAMESPACE))
    client.seed(certificate_secret("tigera-secure-es-gateway-http-certs-public"))
    client.seed(make_secret("tigera-ee-intrusion-detection-elasticsearch-access", OPERATOR_NAMESPACE,
                            {"username": "dpi", "password": "secret"}))
    return client


@pytest.fixture
def guardian_cluster(client, pull_secret):
    client.seed(installation())
    client.seed(pull_secret)
    client.seed({"apiVersion": "operator.tigera.io/v1", "kind": "ManagementClusterConnection",
                 "metadata": {"name": "tigera-secure"},
                 "spec": {"managementClusterAddr": FleetTestConstants.MANAGEMENT_ADDRESS}})
    client.seed(make_secret("tigera-managed-cluster-connection", OPERATOR_NAMESPACE,
                            {"management-cluster.crt": "ca", "managed-cluster.crt": "cert",
                             "managed-cluster.key": "key"}))
    client.seed(certificate_secret("tigera-packetcapture-server-tls"))
    client.seed(certificate_secret("calico-node-prometheus-server-tls"))
    return client


class TestDPIController:
    """Test the deep packet inspection pipeline"""

    def test_active_feature_deploys_and_waits_for_availability(self, dpi_cluster, settings):
        """Test a licensed feature is deployed and converges once its pods are available"""
        # Arrange
        controller = DPIController(dpi_cluster, settings)

        # Act
        waiting = controller.reconcile(REQUEST)
        mark_available(dpi_cluster, "DaemonSet", "tigera-dpi", "tigera-dpi",
                       {"desiredNumberScheduled": 2, "numberAvailable": 2})
        converged = controller.reconcile(REQUEST)

        # Assert
        assert waiting.state == OutcomeState.RETRY
        assert waiting.delay == settings.availability_retry_seconds
        assert converged.state == OutcomeState.CONVERGED
        assert not controller.status.is_degraded
        assert dpi_cluster.get_optional("v1", "Secret", "node-certs", "tigera-dpi") is not None
        assert dpi_cluster.get_optional("v1", "Secret", FleetTestConstants.PULL_SECRET, "tigera-dpi") is not None
        assert dpi_cluster.get_optional("v1", "ConfigMap", "tigera-ca-bundle", "tigera-dpi") is not None
        assert dpi_cluster.get_optional("v1", "Secret", "tigera-ca-private", OPERATOR_NAMESPACE) is not None

    def test_second_pass_is_free_of_mutations(self, dpi_cluster, settings):
        # Arrange
        controller = DPIController(dpi_cluster, settings)
        controller.reconcile(REQUEST)
        dpi_cluster.reset_mutations()

        # Act
        DPIController(dpi_cluster, settings).reconcile(REQUEST)

        # Assert
        assert dpi_cluster.mutation_count == 0

    def test_shared_node_certificate_not_rewritten(self, dpi_cluster, settings):
        before = dpi_cluster.get("v1", "Secret", "node-certs", OPERATOR_NAMESPACE)

        DPIController(dpi_cluster, settings).reconcile(REQUEST)

        after = dpi_cluster.get("v1", "Secret", "node-certs", OPERATOR_NAMESPACE)
        assert after["metadata"]["resourceVersion"] == before["metadata"]["resourceVersion"]

    def test_license_loss_tears_down(self, dpi_cluster, settings):
        """Test losing the license removes the namespace and the copied certificates"""
        # Arrange
        controller = DPIController(dpi_cluster, settings)
        controller.reconcile(REQUEST)
        dpi_cluster.seed(license_key())

        # Act
        outcome = controller.reconcile(REQUEST)

        # Assert
        assert outcome.state == OutcomeState.DEGRADED
        assert outcome.reason == ErrorMessages.InputError.FEATURE_NOT_ACTIVE.value
        assert controller.status.is_degraded
        assert dpi_cluster.get_optional("v1", "Namespace", "tigera-dpi") is None
        assert dpi_cluster.get_optional("apps/v1", "DaemonSet", "tigera-dpi", "tigera-dpi") is None
        assert dpi_cluster.get_optional("v1", "Secret", "node-certs", "tigera-dpi") is None
        assert dpi_cluster.get_optional("v1", "Secret", "node-certs", OPERATOR_NAMESPACE) is not None

    def test_removed_resource_keeps_namespace(self, dpi_cluster, settings):
        # Arrange
        controller = DPIController(dpi_cluster, settings)
        controller.reconcile(REQUEST)
        dpi_cluster.delete("crd.projectcalico.org/v1", "DeepPacketInspection", "sample", "workloads")

        # Act
        outcome = controller.reconcile(REQUEST)

        # Assert
        assert outcome.state == OutcomeState.CONVERGED
        assert not controller.status.cr_found
        assert dpi_cluster.get_optional("v1", "Namespace", "tigera-dpi") is not None
        assert dpi_cluster.get_optional("apps/v1", "DaemonSet", "tigera-dpi", "tigera-dpi") is None

    def test_license_api_not_ready(self, dpi_cluster, settings):
        controller = DPIController(dpi_cluster, settings, license_api_ready=lambda: False)

        outcome = controller.reconcile(REQUEST)

        assert outcome.state == OutcomeState.RETRY
        assert outcome.delay == 10.0
        assert outcome.reason == ErrorMessages.InputError.LICENSE_NOT_READY.value
        assert controller.status.degraded_reason == outcome.reason

    def test_missing_license(self, dpi_cluster, settings):
        dpi_cluster.delete("projectcalico.org/v3", "LicenseKey", "default")

        outcome = DPIController(dpi_cluster, settings).reconcile(REQUEST)

        assert outcome.state == OutcomeState.RETRY
        assert outcome.reason == ErrorMessages.InputError.LICENSE_NOT_FOUND.value

    def test_missing_installation_is_degraded(self, dpi_cluster, settings):
        dpi_cluster.delete("operator.tigera.io/v1", "Installation", "default")

        outcome = DPIController(dpi_cluster, settings).reconcile(REQUEST)

        assert outcome.state == OutcomeState.DEGRADED
        assert outcome.reason == ErrorMessages.InputError.INSTALLATION_NOT_FOUND.value

    def test_calico_installation_waits(self, dpi_cluster, settings):
        dpi_cluster.seed(installation(variant="Calico"))

        outcome = DPIController(dpi_cluster, settings).reconcile(REQUEST)

        assert outcome.state == OutcomeState.RETRY
        assert outcome.delay == settings.short_retry_seconds

    def test_missing_node_certificate_waits(self, dpi_cluster, settings):
        # Arrange
        dpi_cluster.delete("v1", "Secret", "node-certs", OPERATOR_NAMESPACE)

        # Act
        outcome = DPIController(dpi_cluster, settings).reconcile(REQUEST)

        # Assert
        assert outcome.state == OutcomeState.RETRY
        assert "node-certs" in outcome.reason
        assert dpi_cluster.get_optional("apps/v1", "DaemonSet", "tigera-dpi", "tigera-dpi") is None

    def test_apply_failure_is_degraded(self, dpi_cluster, settings):
        dpi_cluster.fail_on("create", "DaemonSet", "tigera-dpi")

        outcome = DPIController(dpi_cluster, settings).reconcile(REQUEST)

        assert outcome.state == OutcomeState.DEGRADED
        assert outcome.delay == settings.error_retry_seconds
        assert dpi_cluster.get_optional("v1", "ServiceAccount", "tigera-dpi", "tigera-dpi") is not None

    def test_failed_apply_runs_again_from_queue(self, dpi_cluster, settings):
        """Test a pass that failed to apply is re-run by the queue and deploys the workload"""
        # Arrange
        clock = FakeClock()
        queue = WorkQueue(clock=clock)
        controller = DPIController(dpi_cluster, settings)
        dpi_cluster.fail_on("create", "DaemonSet", "tigera-dpi")
        queue.add(REQUEST)

        # Act
        failed = queue.process_next(controller.reconcile)
        dpi_cluster.clear_failures()
        early = queue.process_next(controller.reconcile)
        clock.advance(settings.error_retry_seconds)
        retried = queue.process_next(controller.reconcile)

        # Assert
        assert failed.state == OutcomeState.DEGRADED
        assert early is None
        assert retried.state == OutcomeState.RETRY
        assert dpi_cluster.get_optional("apps/v1", "DaemonSet", "tigera-dpi", "tigera-dpi") is not None

    def test_certificates_created_before_daemon_set(self, dpi_cluster, settings):
        """Test the namespace comes first and the mounted certificates precede the DaemonSet"""
        # Act
        DPIController(dpi_cluster, settings).reconcile(REQUEST)

        # Assert
        created = [key for operation, key in dpi_cluster.mutations if operation == "create"]
        namespace = created.index(("Namespace", "", "tigera-dpi"))
        node_certs = created.index(("Secret", "tigera-dpi", "node-certs"))
        bundle = created.index(("ConfigMap", "tigera-dpi", "tigera-ca-bundle"))
        daemon_set = created.index(("DaemonSet", "tigera-dpi", "tigera-dpi"))
        assert namespace < node_certs < daemon_set
        assert namespace < bundle < daemon_set


class TestClusterConnectionController:
    """Test the guardian pipeline"""

    def test_connection_deploys_guardian(self, guardian_cluster, settings):
        """Test a connection deploys guardian owned by the connection resource"""
        # Arrange
        controller = ClusterConnectionController(guardian_cluster, settings)
        connection = guardian_cluster.get("operator.tigera.io/v1", "ManagementClusterConnection", "tigera-secure")

        # Act
        waiting = controller.reconcile(REQUEST)
        mark_available(guardian_cluster, "Deployment", "tigera-guardian", "tigera-guardian",
                       {"availableReplicas": 1})
        converged = controller.reconcile(REQUEST)

        # Assert
        assert waiting.state == OutcomeState.RETRY
        assert converged.state == OutcomeState.CONVERGED
        deployment = guardian_cluster.get("apps/v1", "Deployment", "tigera-guardian", "tigera-guardian")
        assert deployment["metadata"]["ownerReferences"][0]["uid"] == connection["metadata"]["uid"]
        env = {item["name"]: item.get("value")
               for item in deployment["spec"]["template"]["spec"]["containers"][0]["env"]}
        assert env["GUARDIAN_VOLTRON_URL"] == FleetTestConstants.MANAGEMENT_ADDRESS
        bundle = guardian_cluster.get("v1", "ConfigMap", "tigera-ca-bundle", "tigera-guardian")
        assert bundle["data"]["ca-bundle.crt"].count("BEGIN CERTIFICATE") == 3

    def test_removed_connection_prunes_guardian(self, guardian_cluster, settings):
        # Arrange
        controller = ClusterConnectionController(guardian_cluster, settings)
        controller.reconcile(REQUEST)
        guardian_cluster.delete("operator.tigera.io/v1", "ManagementClusterConnection", "tigera-secure")

        # Act
        outcome = controller.reconcile(REQUEST)

        # Assert
        assert outcome.state == OutcomeState.CONVERGED
        assert guardian_cluster.get_optional("v1", "Namespace", "tigera-guardian") is None
        assert guardian_cluster.get_optional("v1", "ConfigMap", "tigera-ca-bundle", "tigera-guardian") is None
        assert not controller.status.cr_found

    def test_conflicting_management_cluster(self, guardian_cluster, settings):
        # Arrange
        guardian_cluster.seed({"apiVersion": "operator.tigera.io/v1", "kind": "ManagementCluster",
                               "metadata": {"name": "tigera-secure"}})

        # Act
        outcome = ClusterConnectionController(guardian_cluster, settings).reconcile(REQUEST)

        # Assert
        assert outcome.state == OutcomeState.DEGRADED
        assert "ManagementCluster" in outcome.reason
        assert guardian_cluster.get_optional("apps/v1", "Deployment", "tigera-guardian", "tigera-guardian") is None

    def test_missing_tunnel_secret_waits(self, guardian_cluster, settings):
        guardian_cluster.delete("v1", "Secret", "tigera-managed-cluster-connection", OPERATOR_NAMESPACE)

        outcome = ClusterConnectionController(guardian_cluster, settings).reconcile(REQUEST)

        assert outcome.state == OutcomeState.RETRY
        assert "tigera-managed-cluster-connection" in outcome.reason

    def test_missing_bundle_certificate_waits(self, guardian_cluster, settings):
        guardian_cluster.delete("v1", "Secret", "calico-node-prometheus-server-tls", OPERATOR_NAMESPACE)

        outcome = ClusterConnectionController(guardian_cluster, settings).reconcile(REQUEST)

        assert outcome.state == OutcomeState.RETRY
        assert "calico-node-prometheus-server-tls" in outcome.reason

    def test_management_cluster_gets_tunnel_secret(self, client, settings):
        """Test a management cluster receives a self-signed tunnel server secret once"""
        # Arrange
        client.seed(installation())
        management_cluster = client.seed({"apiVersion": "operator.tigera.io/v1", "kind": "ManagementCluster",
                                          "metadata": {"name": "tigera-secure"}})
        controller = ClusterConnectionController(client, settings)

        # Act
        first = controller.reconcile(REQUEST)
        secret = client.get("v1", "Secret", "tigera-management-cluster-connection", OPERATOR_NAMESPACE)
        client.reset_mutations()
        second = ClusterConnectionController(client, settings).reconcile(REQUEST)

        # Assert
        assert first.state == OutcomeState.CONVERGED
        assert second.state == OutcomeState.CONVERGED
        assert secret["metadata"]["ownerReferences"][0]["uid"] == management_cluster["metadata"]["uid"]
        assert client.mutation_count == 0

    def test_nothing_configured(self, client, settings):
        client.seed(installation())

        outcome = ClusterConnectionController(client, settings).reconcile(REQUEST)

        assert outcome.state == OutcomeState.CONVERGED
        assert client.mutation_count == 0
