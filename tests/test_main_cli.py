from __future__ import annotations

import base64
import json
from datetime import timedelta
from pathlib import Path

from typer.testing import CliRunner

from aura_controller.config import OperatorConfig
from aura_controller.main import app as cli_app
from aura_controller.reconciler import ReconcileResult
from aura_controller.state import StateStore

from conftest import FakeRecordStore, make_instance


def _config_file(tmp_path: Path) -> Path:
    config_path = Path(tmp_path) / "config.yaml"
    config_path.write_text("dummy: true")
    return config_path


def _patch_config(monkeypatch, config_obj) -> None:
    monkeypatch.setattr("aura_controller.main.load_config", lambda _: config_obj)


class DummyController:
    def __init__(self, result: ReconcileResult) -> None:
        self.result = result
        self.calls: list[tuple[str, str]] = []

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        self.calls.append((namespace, name))
        return self.result


def _patch_controller(monkeypatch, controller: DummyController, records: FakeRecordStore) -> None:
    monkeypatch.setattr("aura_controller.main._build_controller", lambda cfg, backend: (controller, records))


def test_reconcile_command_outputs_status(tmp_path, monkeypatch) -> None:
    runner = CliRunner()
    records = FakeRecordStore()
    records.add(make_instance(namespace="graphs", instance_id="a1"))
    controller = DummyController(ReconcileResult(requeue_after=timedelta(seconds=30)))
    _patch_config(monkeypatch, OperatorConfig())
    _patch_controller(monkeypatch, controller, records)

    result = runner.invoke(
        cli_app,
        ["reconcile", "graphs/graph", "--config", str(_config_file(tmp_path)), "--backend", "local"],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["instance"] == "graphs/graph"
    assert payload["status"]["instanceId"] == "a1"
    assert payload["requeue_after"] == 30.0
    assert payload["error"] is None
    assert controller.calls == [("graphs", "graph")]


def test_reconcile_command_fails_on_error(tmp_path, monkeypatch) -> None:
    runner = CliRunner()
    records = FakeRecordStore()
    records.add(make_instance())
    controller = DummyController(ReconcileResult(error=RuntimeError("failed to get instance")))
    _patch_config(monkeypatch, OperatorConfig())
    _patch_controller(monkeypatch, controller, records)

    result = runner.invoke(cli_app, ["reconcile", "graph", "--config", str(_config_file(tmp_path))])

    assert result.exit_code == 1
    assert "failed to get instance" in result.output
    assert controller.calls == [("default", "graph")]


def test_reconcile_command_missing_record(tmp_path, monkeypatch) -> None:
    runner = CliRunner()
    controller = DummyController(ReconcileResult())
    _patch_config(monkeypatch, OperatorConfig())
    _patch_controller(monkeypatch, controller, FakeRecordStore())

    result = runner.invoke(cli_app, ["reconcile", "graph", "--config", str(_config_file(tmp_path))])

    assert result.exit_code == 1


def test_apply_command_stores_manifests(tmp_path, monkeypatch) -> None:
    runner = CliRunner()
    state_dir = tmp_path / "state"
    _patch_config(monkeypatch, OperatorConfig.from_dict({"state": {"path": str(state_dir)}}))
    manifest = tmp_path / "graph.yaml"
    manifest.write_text(
        "\n---\n".join(
            [
                json.dumps(
                    {
                        "apiVersion": "v1",
                        "kind": "Secret",
                        "metadata": {"name": "aura-credentials"},
                        "data": {"clientID": base64.b64encode(b"client").decode()},
                        "stringData": {"clientSecret": "secret"},
                    }
                ),
                json.dumps(
                    {
                        "apiVersion": "neo4j.infra.doodle.com/v1beta1",
                        "kind": "AuraInstance",
                        "metadata": {"name": "graph"},
                        "spec": {"tier": "free-db", "tenantID": "tenant-1", "secret": {"name": "aura-credentials"}},
                    }
                ),
            ]
        )
    )

    result = runner.invoke(
        cli_app,
        ["apply", str(manifest), "--config", str(_config_file(tmp_path)), "--namespace", "graphs"],
    )

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == [
        {"secret": "graphs/aura-credentials"},
        {"instance": "graphs/graph", "generation": 1},
    ]
    store = StateStore(state_dir)
    assert store.secrets.get("graphs", "aura-credentials").data == {"clientID": "client", "clientSecret": "secret"}
    assert store.records.get("graphs", "graph").spec.tenant_id == "tenant-1"
