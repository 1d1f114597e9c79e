from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from aura_controller.models import (
    AuraInstance,
    AuraInstanceStatus,
    Condition,
    connection_secret_for,
    deserialize_datetime,
    format_duration,
    parse_duration,
    serialize_datetime,
)


def _manifest() -> dict:
    return {
        "apiVersion": "neo4j.infra.doodle.com/v1beta1",
        "kind": "AuraInstance",
        "metadata": {"name": "graph", "namespace": "data", "uid": "uid-1", "generation": 3, "resourceVersion": "17"},
        "spec": {
            "tier": "professional-db",
            "region": "europe-west1",
            "cloudProvider": "gcp",
            "neo4jVersion": "5",
            "tenantID": "tenant-1",
            "memory": "2GB",
            "secret": {"name": "aura", "clientIDKey": "id", "clientSecretKey": "key"},
            "vectorOptimized": True,
            "timeout": "2m",
            "interval": "10m",
        },
        "status": {
            "instanceId": "abc",
            "connectionUri": "graph-connection",
            "observedGeneration": 2,
            "conditions": [
                {
                    "type": "Ready",
                    "status": "True",
                    "reason": "InstanceRunning",
                    "message": "Instance is running",
                    "observedGeneration": 2,
                    "lastTransitionTime": "2024-05-01T10:00:00Z",
                }
            ],
        },
    }


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("30s", timedelta(seconds=30)),
        ("5m", timedelta(minutes=5)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("1.5s", timedelta(seconds=1.5)),
        ("250ms", timedelta(milliseconds=250)),
        ("0", timedelta(0)),
    ],
)
def test_parse_duration(text: str, expected: timedelta) -> None:
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["10", "abc", "5 minutes", "1h-5m"])
def test_parse_duration_rejects_garbage(text: str) -> None:
    with pytest.raises(ValueError):
        parse_duration(text)


def test_format_duration() -> None:
    assert format_duration(timedelta(minutes=90)) == "1h30m"
    assert format_duration(timedelta(seconds=30)) == "30s"
    assert format_duration(timedelta(0)) == "0s"


def test_datetime_serialization_uses_utc_suffix() -> None:
    value = datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)

    text = serialize_datetime(value)

    assert text == "2024-05-01T12:00:00Z"
    assert deserialize_datetime(text) == value.replace(microsecond=0)


def test_instance_from_manifest() -> None:
    instance = AuraInstance.from_dict(_manifest())

    assert instance.key == "data/graph"
    assert instance.metadata.generation == 3
    assert instance.metadata.resource_version == "17"
    assert instance.spec.tenant_id == "tenant-1"
    assert instance.spec.secret.id_key == "id"
    assert instance.spec.secret.secret_key == "key"
    assert instance.spec.vector_optimized is True
    assert instance.spec.graph_analytics_plugin is False
    assert instance.spec.timeout == timedelta(minutes=2)
    assert instance.spec.interval == timedelta(minutes=10)
    assert instance.status.instance_id == "abc"
    assert instance.status.connection_secret == "graph-connection"
    assert instance.status.conditions[0].reason == "InstanceRunning"


def test_instance_round_trips_through_dict() -> None:
    manifest = _manifest()

    payload = AuraInstance.from_dict(manifest).to_dict()

    assert payload["spec"] == manifest["spec"]
    assert payload["status"] == manifest["status"]
    assert payload["metadata"] == manifest["metadata"]


def test_secret_reference_defaults_keys() -> None:
    manifest = _manifest()
    manifest["spec"]["secret"] = {"name": "aura"}

    instance = AuraInstance.from_dict(manifest)

    assert instance.spec.secret.id_key == "clientID"
    assert instance.spec.secret.secret_key == "clientSecret"
    assert instance.spec.to_dict()["secret"] == {"name": "aura"}


def test_empty_status_is_omitted() -> None:
    manifest = _manifest()
    manifest.pop("status")

    payload = AuraInstance.from_dict(manifest).to_dict()

    assert "status" not in payload
    assert AuraInstanceStatus().to_dict() == {}


def test_condition_without_transition_time_gets_one() -> None:
    condition = Condition.from_dict({"type": "Ready", "status": "False"})

    assert condition.last_transition_time.tzinfo is not None
    assert condition.reason == ""


def test_connection_secret_name_defaults_to_instance_name() -> None:
    manifest = _manifest()
    instance = AuraInstance.from_dict(manifest)
    assert instance.connection_secret_name == "graph-connection"

    manifest["spec"]["connectionSecret"] = {"name": "custom"}
    assert AuraInstance.from_dict(manifest).connection_secret_name == "custom"


def test_connection_secret_is_owned_by_instance() -> None:
    instance = AuraInstance.from_dict(_manifest())

    secret = connection_secret_for(instance, "neo4j", "pw", "neo4j+s://abc.databases.neo4j.io")

    assert secret.name == "graph-connection"
    assert secret.namespace == "data"
    assert secret.data == {
        "username": "neo4j",
        "password": "pw",
        "connectionURL": "neo4j+s://abc.databases.neo4j.io",
    }
    assert [ref.uid for ref in secret.owner_references] == ["uid-1"]
    assert secret.owner_references[0].kind == "AuraInstance"
