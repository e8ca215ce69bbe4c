"""
Tests for the field-level merge
"""

import json

from fleet_operator.reconcile.merge import (
    APPLIED_FIELDS_ANNOTATION,
    applied_fields,
    field_set,
    merge_object,
    merge_values,
    record_applied_fields,
)


def live_service():
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": "web",
            "namespace": "ns",
            "resourceVersion": "7",
            "uid": "abc",
            "annotations": {"external.io/owner": "someone"},
        },
        "spec": {
            "clusterIP": "10.0.0.12",
            "clusterIPs": ["10.0.0.12"],
            "selector": {"k8s-app": "web"},
            "ports": [{"name": "https", "port": 443, "nodePort": 30443}],
        },
        "status": {"loadBalancer": {}},
    }


class TestMergeValues:
    """Test the recursive overlay"""

    def test_desired_keys_win(self):
        merged = merge_values({"a": 1, "b": {"c": 2}}, {"b": {"c": 3}})

        assert merged == {"a": 1, "b": {"c": 3}}

    def test_named_lists_merge_by_name(self):
        """Test items present in both lists keep their live-only keys"""
        # Arrange
        live = [{"name": "a", "image": "old", "terminationMessagePath": "/dev/log"}, {"name": "b"}]
        desired = [{"name": "a", "image": "new"}]

        # Act
        merged = merge_values(live, desired)

        # Assert
        assert merged == [{"name": "a", "image": "new", "terminationMessagePath": "/dev/log"}]

    def test_plain_lists_replaced(self):
        assert merge_values(["x", "y"], ["z"]) == ["z"]

    def test_inputs_not_mutated(self):
        live = {"a": {"b": 1}}
        desired = {"a": {"c": 2}}

        merge_values(live, desired)

        assert live == {"a": {"b": 1}}
        assert desired == {"a": {"c": 2}}


class TestMergeObject:
    """Test merging a desired manifest into a live object"""

    def test_server_assigned_fields_survive(self):
        """Test metadata, status and assigned Service fields keep their live values"""
        # Arrange
        desired = {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": "web", "namespace": "ns", "resourceVersion": "1"},
            "spec": {"selector": {"k8s-app": "web"}, "ports": [{"name": "https", "port": 443}],
                     "clusterIP": "None"},
        }

        # Act
        merged = merge_object(live_service(), desired)

        # Assert
        assert merged["metadata"]["resourceVersion"] == "7"
        assert merged["metadata"]["uid"] == "abc"
        assert merged["metadata"]["annotations"] == {"external.io/owner": "someone"}
        assert merged["spec"]["clusterIP"] == "10.0.0.12"
        assert merged["spec"]["ports"][0]["nodePort"] == 30443
        assert merged["status"] == {"loadBalancer": {}}

    def test_matching_desired_state_is_identity(self):
        live = live_service()
        desired = {"apiVersion": "v1", "kind": "Service", "metadata": {"name": "web", "namespace": "ns"},
                   "spec": {"selector": {"k8s-app": "web"}}}

        assert merge_object(live, desired) == live

    def test_divergent_field_detected(self):
        live = live_service()
        desired = {"apiVersion": "v1", "kind": "Service", "metadata": {"name": "web", "namespace": "ns"},
                   "spec": {"selector": {"k8s-app": "api"}}}

        merged = merge_object(live, desired)

        assert merged != live
        assert merged["spec"]["selector"] == {"k8s-app": "api"}

    def test_server_metadata_not_invented(self):
        live = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "c"}}
        desired = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "c", "uid": "forged"},
                   "status": {"x": 1}}

        merged = merge_object(live, desired)

        assert "uid" not in merged["metadata"]
        assert "status" not in merged


def deployment(pod_spec, annotations=None):
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "gw", "namespace": "ns", "annotations": dict(annotations or {})},
        "spec": {"replicas": 1, "template": {"spec": pod_spec}},
    }


class TestAppliedFields:
    """Test removal of fields the operator applied before and no longer renders"""

    def test_field_set_keeps_shape_and_names_only(self):
        fields = field_set({"data": {"tls.key": "c2VjcmV0"}, "env": [{"name": "A", "value": "1"}], "args": ["x"]})

        assert fields == {"data": {"tls.key": None}, "env": [{"name": "A", "value": None}], "args": None}

    def test_record_round_trips(self):
        manifest = record_applied_fields({"kind": "ConfigMap", "metadata": {"name": "c"}, "data": {"k": "v"}})

        assert applied_fields(manifest) == {"kind": None, "metadata": {"name": None}, "data": {"k": None}}
        assert json.loads(manifest["metadata"]["annotations"][APPLIED_FIELDS_ANNOTATION])["data"] == {"k": None}

    def test_unreadable_record_ignored(self):
        manifest = {"metadata": {"annotations": {APPLIED_FIELDS_ANNOTATION: "{not json"}}}

        assert applied_fields(manifest) is None

    def test_previously_applied_key_removed(self):
        """Test keys from the previous apply that are no longer desired are dropped"""
        # Arrange
        previous = record_applied_fields(deployment({"affinity": {"podAntiAffinity": {}}, "containers": []}))
        live = dict(previous, status={"availableReplicas": 1})
        live["spec"]["template"]["spec"]["schedulerName"] = "default-scheduler"
        desired = record_applied_fields(deployment({"containers": []}))

        # Act
        merged = merge_object(live, desired)

        # Assert
        pod_spec = merged["spec"]["template"]["spec"]
        assert "affinity" not in pod_spec
        assert pod_spec["schedulerName"] == "default-scheduler"
        assert merged["status"] == {"availableReplicas": 1}

    def test_named_item_key_removed(self):
        previous = record_applied_fields(deployment({"containers": [{"name": "c", "image": "i", "args": ["-v"]}]}))
        desired = record_applied_fields(deployment({"containers": [{"name": "c", "image": "i"}]}))

        merged = merge_object(previous, desired)

        assert merged["spec"]["template"]["spec"]["containers"] == [{"name": "c", "image": "i"}]

    def test_volume_source_replaced_without_record(self):
        """Test a volume switches source even on objects carrying no record"""
        live = deployment({"volumes": [{"name": "certs", "emptyDir": {}}]})
        desired = deployment({"volumes": [{"name": "certs", "secret": {"secretName": "certs"}}]})

        merged = merge_object(live, desired)

        assert merged["spec"]["template"]["spec"]["volumes"] == [{"name": "certs", "secret": {"secretName": "certs"}}]

    def test_unrecorded_live_keys_kept(self):
        live = deployment({"containers": [], "dnsPolicy": "ClusterFirst"})
        desired = deployment({"containers": []})

        assert merge_object(live, desired)["spec"]["template"]["spec"]["dnsPolicy"] == "ClusterFirst"
