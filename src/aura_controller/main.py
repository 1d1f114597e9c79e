"""CLI entrypoint for the Aura controller."""
from __future__ import annotations

import base64
import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

import typer
import yaml

from .config import OperatorConfig, load_config
from .controller import AuraInstanceController
from .errors import NotFoundError
from .manager import Manager, split_key
from .models import AuraInstance, Secret
from .state import EventRecorder, LoggingEventRecorder, RecordStore, SecretStore, StateStore


def _configure_logging() -> None:
    env_level = os.getenv("AURA_CONTROLLER_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, env_level, None)
    if not isinstance(level, int):
        level = logging.INFO
        logging.warning(
            "Unrecognized AURA_CONTROLLER_LOG_LEVEL '%s'; defaulting to INFO",
            env_level,
        )
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")


_configure_logging()

app = typer.Typer(help="Neo4j Aura instance controller")


class Backend(str, Enum):
    kube = "kube"
    local = "local"


def _build_stores(config: OperatorConfig, backend: Backend) -> Tuple[RecordStore, SecretStore, EventRecorder]:
    if backend is Backend.local:
        state = StateStore(config.state.path)
        return state.records, state.secrets, LoggingEventRecorder()

    from .kube import KubeEventRecorder, KubeRecordStore, KubeSecretStore, load_kube_config

    load_kube_config(config.kubernetes.kubeconfig)
    return (
        KubeRecordStore(label_selector=config.kubernetes.label_selector),
        KubeSecretStore(),
        KubeEventRecorder(),
    )


def _build_controller(config: OperatorConfig, backend: Backend) -> Tuple[AuraInstanceController, RecordStore]:
    records, secrets, events = _build_stores(config, backend)
    controller = AuraInstanceController(records, secrets, config=config.aura, events=events)
    return controller, records


def _secret_from_manifest(document: dict) -> Secret:
    data = {key: base64.b64decode(value).decode("utf-8") for key, value in (document.get("data") or {}).items()}
    data.update({key: str(value) for key, value in (document.get("stringData") or {}).items()})
    metadata = document["metadata"]
    return Secret(name=metadata["name"], namespace=metadata["namespace"], data=data)


@app.command("run")
def run(
    config: Path = typer.Option(..., exists=True, readable=True, help="Path to controller config YAML"),
    backend: Backend = typer.Option(Backend.kube, help="Where AuraInstance records and secrets live"),
) -> None:
    """Start the reconciliation loop."""

    controller_config = load_config(config)
    controller, records = _build_controller(controller_config, backend)
    manager = Manager(
        controller.reconcile,
        records,
        config=controller_config.controller,
        namespace=controller_config.kubernetes.namespace,
    )
    try:
        manager.run()
    except KeyboardInterrupt:  # pragma: no cover - interactive shutdown
        typer.secho("Shutting down", err=True)
    finally:
        manager.stop()


@app.command("reconcile")
def reconcile(
    key: str = typer.Argument(..., help="Record to reconcile, as NAMESPACE/NAME or NAME"),
    config: Path = typer.Option(..., exists=True, readable=True, help="Path to controller config YAML"),
    backend: Backend = typer.Option(Backend.kube, help="Where AuraInstance records and secrets live"),
) -> None:
    """Run a single reconciliation pass and print the resulting status."""

    controller_config = load_config(config)
    controller, records = _build_controller(controller_config, backend)
    namespace, name = split_key(key)
    result = controller.reconcile(namespace, name)
    try:
        instance = records.get(namespace, name)
    except NotFoundError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    summary = {
        "instance": instance.key,
        "status": instance.status.to_dict(),
        "requeue": result.requeue,
        "requeue_after": result.requeue_after.total_seconds() if result.requeue_after is not None else None,
        "error": str(result.error) if result.error is not None else None,
    }
    typer.echo(json.dumps(summary, indent=2))
    if result.failed:
        raise typer.Exit(code=1)


@app.command("apply")
def apply(
    manifest: Path = typer.Argument(..., exists=True, readable=True, help="AuraInstance manifest YAML"),
    config: Path = typer.Option(..., exists=True, readable=True, help="Path to controller config YAML"),
    namespace: Optional[str] = typer.Option(None, help="Namespace for manifests that do not set one"),
) -> None:
    """Store AuraInstance and Secret manifests in the local backend."""

    controller_config = load_config(config)
    state = StateStore(controller_config.state.path)
    applied = []
    for document in yaml.safe_load_all(manifest.read_text()):
        if not document:
            continue
        kind = document.get("kind")
        metadata = document.setdefault("metadata", {})
        if not metadata.get("namespace"):
            metadata["namespace"] = namespace or "default"
        if kind == "Secret":
            secret = _secret_from_manifest(document)
            state.secrets.put(secret)
            applied.append({"secret": f"{secret.namespace}/{secret.name}"})
        elif kind == "AuraInstance":
            stored = state.apply(AuraInstance.from_dict(document))
            applied.append({"instance": stored.key, "generation": stored.metadata.generation})
        else:
            typer.secho(f"Skipping document of kind {kind!r}", fg=typer.colors.YELLOW, err=True)
    typer.echo(json.dumps(applied, indent=2))


if __name__ == "__main__":
    app()
