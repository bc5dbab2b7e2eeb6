"""
ClusterState - progress record for a single bootstrap run.

Entries are only ever added or advanced, never removed. Each node entry carries
its own lock so concurrent start/poll tasks of a tier never race on it.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from rich import box
from rich.table import Table

from phil.commands.topology import NodeSpec

STEP_APPLIED = "applied"
STEP_SKIPPED = "skipped"
STEP_FAILED = "failed"


@dataclass
class NodeStatus:
    spec: NodeSpec
    started: bool = False
    reachable: bool = False
    configured: bool = False
    pid: Optional[int] = None
    error: Optional[str] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "address": self.spec.address,
            "role": self.spec.role.value,
            "started": self.started,
            "reachable": self.reachable,
            "configured": self.configured,
        }
        if self.spec.set_name:
            result["set_name"] = self.spec.set_name
        if self.pid is not None:
            result["pid"] = self.pid
        if self.error:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class StepRecord:
    """One administrative step and how it ended."""

    name: str
    target: str
    outcome: str
    detail: Optional[str] = None


class ClusterState:
    """Which nodes are started, reachable and configured, and which
    configuration steps were applied."""

    def __init__(self, nodes: Optional[list[NodeSpec]] = None):
        self._nodes: dict[str, NodeStatus] = {}
        self._steps: list[StepRecord] = []
        self._steps_lock = threading.Lock()
        for spec in nodes or []:
            self.add_node(spec)

    def add_node(self, spec: NodeSpec) -> NodeStatus:
        status = self._nodes.get(spec.address)
        if status is None:
            status = NodeStatus(spec=spec)
            self._nodes[spec.address] = status
        return status

    def node(self, spec: NodeSpec) -> NodeStatus:
        return self._nodes[spec.address]

    @property
    def nodes(self) -> list[NodeStatus]:
        return list(self._nodes.values())

    @property
    def steps(self) -> list[StepRecord]:
        with self._steps_lock:
            return list(self._steps)

    def mark_started(self, spec: NodeSpec, pid: Optional[int] = None) -> None:
        status = self.node(spec)
        with status.lock:
            status.started = True
            status.pid = pid

    def mark_reachable(self, spec: NodeSpec) -> None:
        status = self.node(spec)
        with status.lock:
            status.reachable = True

    def mark_configured(self, spec: NodeSpec) -> None:
        status = self.node(spec)
        with status.lock:
            status.configured = True

    def mark_failed(self, spec: NodeSpec, error: str) -> None:
        status = self.node(spec)
        with status.lock:
            status.error = error

    def record_step(
        self, name: str, target: str, outcome: str, detail: Optional[str] = None
    ) -> StepRecord:
        record = StepRecord(name=name, target=target, outcome=outcome, detail=detail)
        with self._steps_lock:
            self._steps.append(record)
        return record

    @property
    def started(self) -> list[NodeSpec]:
        return [s.spec for s in self._nodes.values() if s.started]

    @property
    def converged(self) -> bool:
        return bool(self._nodes) and all(
            s.started and s.reachable and s.configured for s in self._nodes.values()
        )

    @property
    def failed_steps(self) -> list[StepRecord]:
        return [step for step in self.steps if step.outcome == STEP_FAILED]

    def to_dict(self) -> dict[str, Any]:
        return {
            "converged": self.converged,
            "nodes": [status.to_dict() for status in self._nodes.values()],
            "steps": [
                {
                    "name": step.name,
                    "target": step.target,
                    "outcome": step.outcome,
                    **({"detail": step.detail} if step.detail else {}),
                }
                for step in self.steps
            ],
        }

    def render_table(self) -> Table:
        """Summarize node status as a rich table."""
        table = Table(title="Cluster State", box=box.ROUNDED)
        table.add_column("Node", style="cyan")
        table.add_column("Role", style="blue")
        table.add_column("Set", style="magenta")
        table.add_column("PID", style="yellow")
        table.add_column("Started")
        table.add_column("Reachable")
        table.add_column("Configured")

        def mark(value: bool) -> str:
            return "[green]✓[/green]" if value else "[red]✗[/red]"

        for status in self._nodes.values():
            table.add_row(
                status.spec.address,
                status.spec.role.value,
                status.spec.set_name or "-",
                str(status.pid) if status.pid is not None else "-",
                mark(status.started),
                mark(status.reachable),
                mark(status.configured),
            )
        return table
