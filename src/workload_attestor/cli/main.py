"""CLI entry point for workload-attestor.

Invoked as::

    workload-attestor [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m workload_attestor.cli.main

Commands
--------
version      Show version information
selectors    Preview selectors for pods stored in a JSON file (offline)
attest       Attest a process ID or token against the cluster
namespaces   List active namespaces
annotate     Merge annotations into pods
serve        Run the HTTP attestation server
"""
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from workload_attestor.config import AttestorConfig, ConfigError, ResolutionMode, load_config
from workload_attestor.convenience import build_engine
from workload_attestor.resolution.descriptor import PodRecord
from workload_attestor.resolution.directory import InMemoryPodDirectory
from workload_attestor.resolution.engine import (
    AttestationRequest,
    ByDiscriminantScan,
    ResolutionEngine,
)
from workload_attestor.resolution.errors import ResolutionError
from workload_attestor.resolution.selectors import SelectorSet, build_selectors

console = Console()


# ------------------------------------------------------------------
# Root group
# ------------------------------------------------------------------


@click.group()
@click.version_option(package_name="workload-attestor")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level.",
)
def cli(log_level: str) -> None:
    """Resolve workloads to pod selectors for identity issuance"""
    logging.basicConfig(level=getattr(logging, log_level.upper()))


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from workload_attestor import __version__

    console.print(f"[bold]workload-attestor[/bold] v{__version__}")


# ------------------------------------------------------------------
# selectors (offline)
# ------------------------------------------------------------------


@cli.command(name="selectors")
@click.argument("pod_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--pid", type=int, default=None, help="Match this process against the pods.")
@click.option(
    "--proc-root",
    type=click.Path(file_okay=False),
    default="/proc",
    show_default=True,
    help="procfs mount used with --pid.",
)
@click.option("--json", "as_json", is_flag=True, help="Print selectors as a JSON array.")
def selectors_command(pod_file: str, pid: int | None, proc_root: str, as_json: bool) -> None:
    """Show the selectors for the pod(s) in POD_FILE.

    POD_FILE holds one pod or a pod list in the cluster's JSON format
    (``kubectl get pod -o json``). Without --pid the file must contain
    exactly one pod.
    """
    try:
        pods = _load_pods(Path(pod_file))
    except ValueError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)

    if pid is None:
        if len(pods) != 1:
            console.print(f"[red]Error:[/red] expected exactly one pod, found {len(pods)}; use --pid")
            sys.exit(1)
        if not pods[0].known:
            console.print(f"[red]Error:[/red] pod {pods[0].qualified_name} has no UID")
            sys.exit(1)
        _print_selectors(build_selectors(pods[0].to_descriptor()), as_json)
        return

    engine = ResolutionEngine(
        ByDiscriminantScan(InMemoryPodDirectory(pods), proc_root=proc_root), max_attempts=1
    )
    _resolve_and_print(engine, AttestationRequest(pid=pid), as_json)


# ------------------------------------------------------------------
# attest
# ------------------------------------------------------------------


@cli.command(name="attest")
@click.option("--config", "config_file", type=click.Path(exists=True), default=None)
@click.option("--pid", type=int, default=None, help="Process ID (process-lookup mode).")
@click.option("--token", default=None, help="Service-account token (credential-lookup mode).")
@click.option("--token-file", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option("--timeout", type=float, default=None, help="Give up after this many seconds.")
@click.option("--json", "as_json", is_flag=True, help="Print selectors as a JSON array.")
def attest_command(
    config_file: str | None,
    pid: int | None,
    token: str | None,
    token_file: str | None,
    timeout: float | None,
    as_json: bool,
) -> None:
    """Attest a workload against the cluster and print its selectors."""
    config = _load_config_or_exit(config_file)
    if token_file:
        token = Path(token_file).read_text(encoding="utf-8").strip()

    if config.mode == ResolutionMode.CREDENTIAL_LOOKUP:
        if pid is not None:
            console.print("[red]Error:[/red] --pid is not used in credential-lookup mode")
            sys.exit(1)
        request = AttestationRequest(credential_meta={config.token_meta_key: token or ""})
    else:
        if token is not None:
            console.print("[red]Error:[/red] --token is not used in process-lookup mode")
            sys.exit(1)
        request = AttestationRequest(pid=pid)

    engine = build_engine(config)
    _resolve_and_print(engine, request, as_json, timeout=timeout)


# ------------------------------------------------------------------
# namespaces / annotate
# ------------------------------------------------------------------


@cli.command(name="namespaces")
@click.option("--config", "config_file", type=click.Path(exists=True), default=None)
def namespaces_command(config_file: str | None) -> None:
    """List the active namespaces in the cluster."""
    from workload_attestor.kube.client import ClusterClientFactory, KubePodDirectory

    config = _load_config_or_exit(config_file)
    directory = KubePodDirectory(ClusterClientFactory(config.cluster))
    try:
        names = directory.active_namespaces()
    except ResolutionError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)
    for name in names:
        console.print(name)


@cli.command(name="annotate")
@click.argument("annotations", nargs=-1, required=True)
@click.option("--config", "config_file", type=click.Path(exists=True), default=None)
@click.option("--namespace", "-n", default="", help="Only pods in this namespace.")
@click.option("--pod", "pod_name", default=None, help="Only pods with this name.")
def annotate_command(
    annotations: tuple[str, ...],
    config_file: str | None,
    namespace: str,
    pod_name: str | None,
) -> None:
    """Merge KEY=VALUE ANNOTATIONS into matching pods."""
    from workload_attestor.kube.client import ClusterClientFactory, KubePodDirectory

    try:
        parsed = _parse_pairs(annotations)
    except ValueError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)

    config = _load_config_or_exit(config_file)
    directory = KubePodDirectory(ClusterClientFactory(config.cluster))
    try:
        patched = directory.annotate_pods(parsed, namespace=namespace, pod_name=pod_name)
    except ResolutionError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)
    console.print(f"[green]Annotated[/green] {len(patched)} pod(s)")
    for name in patched:
        console.print(f"  {name}")


# ------------------------------------------------------------------
# serve
# ------------------------------------------------------------------


@cli.command(name="serve")
@click.option("--config", "config_file", type=click.Path(exists=True), default=None)
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=8080, show_default=True)
@click.option("--timeout", type=float, default=None, help="Per-request attestation timeout.")
def serve_command(config_file: str | None, host: str, port: int, timeout: float | None) -> None:
    """Run the HTTP attestation server."""
    from workload_attestor.server.app import run_server

    config = _load_config_or_exit(config_file)
    run_server(build_engine(config), host=host, port=port, request_timeout=timeout)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _load_config_or_exit(config_file: str | None) -> AttestorConfig:
    try:
        return load_config(config_file)
    except ConfigError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)


def _load_pods(path: Path) -> list[PodRecord]:
    """Read a pod or pod list from a cluster-format JSON file."""
    try:
        data: Any = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path} is not valid JSON: {exc}") from exc
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict) and "items" in data:
        items = data.get("items") or []
    elif isinstance(data, dict):
        items = [data]
    else:
        raise ValueError(f"{path} must contain a pod object or a pod list")
    return [PodRecord.from_dict(item) for item in items if isinstance(item, dict)]


def _parse_pairs(pairs: tuple[str, ...]) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"expected KEY=VALUE, got {pair!r}")
        parsed[key] = value
    return parsed


def _resolve_and_print(
    engine: ResolutionEngine,
    request: AttestationRequest,
    as_json: bool,
    timeout: float | None = None,
) -> None:
    try:
        selectors = engine.resolve(request, timeout=timeout)
    except ResolutionError as exc:
        console.print(f"[red]Error ({exc.kind.value}):[/red] {exc}")
        sys.exit(1)
    _print_selectors(selectors, as_json)


def _print_selectors(selectors: SelectorSet, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(selectors.as_list()))
        return
    table = Table(title="Selectors")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for selector in selectors:
        key, _, value = selector.partition(":")
        table.add_row(key, value)
    console.print(table)


if __name__ == "__main__":
    cli()
