# /*
# Copyright 2026 The GPU Provisioner Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */


"""
cli.py - Provision a GPU-accelerated Kubernetes stack.

Subcommands:
    bootstrap  Probe the host, build the plan for it, and run every phase
    status     Show the result of the last bootstrap run
    probe      Print the host readiness report

Environment Variables:
    Every setting can be overridden via GPU_STACK_* environment variables:
    - GPU_STACK_CLUSTER_NAME (default: amd-gpu-cluster)
    - GPU_STACK_MODEL (default: from dependencies.yaml)
    - GPU_STACK_ENVIRONMENT (auto, bare-metal, containerized-host)
    - GPU_STACK_STATE_DIR (default: ~/.local/state/gpu-provisioner)
    - And more (see config classes for full list)

Examples:
    # Full stack on this host (auto-detects bare metal vs. container)
    gpu-provisioner bootstrap

    # Show the plan without executing anything
    gpu-provisioner bootstrap --dry-run

    # Reuse an existing cluster, install only the GPU operator
    gpu-provisioner bootstrap --skip-cluster-creation --skip-metallb --skip-inference

    # Machine-readable result of the last run
    gpu-provisioner status --json
"""

from __future__ import annotations

import logging
import signal
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer

from gpu_provisioner import console, logger
from gpu_provisioner.config import EnvironmentChoice, StackConfig, display_config, resolve_config
from gpu_provisioner.constants import EXIT_PHASE_FAILED, EXIT_SUCCESS, EXIT_UNSUPPORTED_ENVIRONMENT
from gpu_provisioner.errors import UnsupportedEnvironment
from gpu_provisioner.guard import IdempotencyGuard
from gpu_provisioner.kube import ClusterClient, HelmClient
from gpu_provisioner.orchestrator import Orchestrator
from gpu_provisioner.phase import PhaseContext
from gpu_provisioner.plan import build_plan, select_variant, unsupported_reasons
from gpu_provisioner.probe import EnvironmentProber
from gpu_provisioner.report import RunStore, render_plan, render_snapshot, render_summary, run_log
from gpu_provisioner.runner import CancelToken, CommandRunner
from gpu_provisioner.workload import print_access_hint

app = typer.Typer(
    help="Provision a GPU-accelerated Kubernetes stack.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _build_context(config: StackConfig, cancel_token: CancelToken) -> tuple[PhaseContext, EnvironmentProber]:
    """Wire the runner, clients, and guard, and take the initial snapshot."""
    runner = CommandRunner(cancel_token, default_timeout=config.run.command_timeout)
    prober = EnvironmentProber(runner, config.gpu.gpu_vendor_id)
    cluster = ClusterClient(runner, config.cluster.kubeconfig)
    helm = HelmClient(runner, config.cluster.kubeconfig)
    context = PhaseContext(
        env=prober.probe(),
        runner=runner,
        cluster=cluster,
        helm=helm,
        guard=IdempotencyGuard(runner, cluster, helm),
        config=config,
        cancel_token=cancel_token,
    )
    return context, prober


@contextmanager
def _cancel_on_interrupt(cancel_token: CancelToken) -> Iterator[None]:
    """Turn SIGINT into a cancellation request for the duration of the block."""
    def _handler(signum, frame) -> None:
        console.print("[yellow]\u26a0\ufe0f  Interrupt received, cancelling after the current step...[/yellow]")
        cancel_token.cancel()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _report_unsupported(err: UnsupportedEnvironment) -> None:
    console.print("[red]\u274c Unsupported environment:[/red]")
    for reason in err.reasons:
        console.print(f"[red]   - {reason}[/red]")


@app.command()
def bootstrap(
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Probe and print the plan without executing it"),
    environment: EnvironmentChoice | None = typer.Option(
        None, "--environment", help="Force a plan variant instead of auto-detecting"),
    skip_cluster_creation: bool = typer.Option(
        False, "--skip-cluster-creation", help="Use the cluster kubectl already points at"),
    skip_gpu_operator: bool = typer.Option(
        False, "--skip-gpu-operator", help="Skip cert-manager, GPU operator, and DeviceConfig"),
    skip_metallb: bool = typer.Option(
        False, "--skip-metallb", help="Skip MetalLB and its address pool"),
    skip_inference: bool = typer.Option(
        False, "--skip-inference", help="Skip model storage and the inference workload"),
    cluster_name: str | None = typer.Option(
        None, "--cluster-name", help="kind cluster name (overrides GPU_STACK_CLUSTER_NAME)"),
    model: str | None = typer.Option(
        None, "--model", help="Model to serve (overrides GPU_STACK_MODEL)"),
    state_dir: Path | None = typer.Option(
        None, "--state-dir", help="Directory for run.log and last-run.json"),
) -> None:
    """Provision the full stack on this host.

    Exits 0 on success, 1 when a phase fails fatally, and 2 when the host is
    not supported.
    """
    config = resolve_config(
        environment=environment,
        skip_cluster_creation=skip_cluster_creation,
        skip_gpu_operator=skip_gpu_operator,
        skip_metallb=skip_metallb,
        skip_inference=skip_inference,
        cluster_name=cluster_name,
        model=model,
        state_dir=state_dir,
    )
    display_config(config)

    cancel_token = CancelToken()
    context, prober = _build_context(config, cancel_token)
    try:
        plan = build_plan(context.env, config)
    except UnsupportedEnvironment as err:
        _report_unsupported(err)
        raise typer.Exit(EXIT_UNSUPPORTED_ENVIRONMENT) from err

    if dry_run:
        render_plan(plan)
        console.print("[yellow]\u2139\ufe0f  Dry run: no phase was executed[/yellow]")
        return

    store = RunStore(config.run.state_dir)
    orchestrator = Orchestrator(context, prober)
    with run_log(store.run_log_path), _cancel_on_interrupt(cancel_token):
        result = orchestrator.run(plan)
    store.save(result)
    logger.info("Run log: %s", store.run_log_path)

    if not result.succeeded:
        raise typer.Exit(EXIT_PHASE_FAILED)
    if not config.run.skip_inference:
        print_access_hint(orchestrator.context)


@app.command()
def status(
    json_output: bool = typer.Option(False, "--json", help="Print the last RunResult as JSON"),
    state_dir: Path | None = typer.Option(
        None, "--state-dir", help="Directory holding last-run.json"),
) -> None:
    """Show the outcome of the last bootstrap run."""
    config = resolve_config(state_dir=state_dir)
    result = RunStore(config.run.state_dir).load()
    if result is None:
        console.print(f"[yellow]\u26a0\ufe0f  No recorded run in {config.run.state_dir}[/yellow]")
        raise typer.Exit(EXIT_PHASE_FAILED)
    if json_output:
        typer.echo(result.model_dump_json(indent=2))
        return
    render_summary(result)


@app.command()
def probe(
    environment: EnvironmentChoice | None = typer.Option(
        None, "--environment", help="Check against a forced plan variant"),
    skip_cluster_creation: bool = typer.Option(
        False, "--skip-cluster-creation", help="Check for reusing an existing cluster"),
) -> None:
    """Print the host readiness report.

    Exits 2 when the host cannot be provisioned.
    """
    config = resolve_config(environment=environment, skip_cluster_creation=skip_cluster_creation)
    runner = CommandRunner(default_timeout=config.run.command_timeout)
    snapshot = EnvironmentProber(runner, config.gpu.gpu_vendor_id).probe()
    render_snapshot(snapshot)

    variant = select_variant(snapshot, config)
    reasons = unsupported_reasons(snapshot, config, variant)
    if reasons:
        _report_unsupported(UnsupportedEnvironment(reasons))
        raise typer.Exit(EXIT_UNSUPPORTED_ENVIRONMENT)
    console.print(f"[green]\u2705 Ready for the {variant.value} plan[/green]")
    raise typer.Exit(EXIT_SUCCESS)


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
