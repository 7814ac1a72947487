"""GPU compiler: the validation gate in front of code generation.

This backend needs live device information, so it only compiles for the
fleet a bound client can actually see:

    1. no client                      -> UnimplementedError
    2. client topology != topology    -> UnimplementedError
    3. otherwise lower, check constraints, generate the plan.

The client's topology is read once per compile() call. If devices attach or
detach between that read and the end of compilation the check is stale; it
is a point-in-time check, not a transactional one. load() re-checks.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol, runtime_checkable

from gpu_compiler.codegen import generate_execution_plan
from gpu_compiler.compiled_program import CompiledExecutable
from gpu_compiler.constraint_checker import check_constraints
from gpu_compiler.errors import CompilationError, InvalidArgumentError, UnimplementedError
from gpu_compiler.options import CompileOptions
from gpu_compiler.program import Lowerable, Program
from gpu_compiler.topology import GPU_PLATFORM_NAME, TopologyDescription

logger = logging.getLogger(__name__)


@runtime_checkable
class TopologyProvider(Protocol):
    """The one client capability the compiler uses."""

    def topology_description(self) -> TopologyDescription:
        ...


class GateResult(Enum):
    OK = "ok"
    NO_CLIENT = "no_client"
    TOPOLOGY_MISMATCH = "topology_mismatch"


def check_compile_target(
    topology: TopologyDescription,
    client: TopologyProvider | None,
) -> GateResult:
    """Decide whether `topology` can be compiled for through `client`."""
    if client is None:
        return GateResult.NO_CLIENT
    if client.topology_description() != topology:
        return GateResult.TOPOLOGY_MISMATCH
    return GateResult.OK


class GpuCompiler:
    """Stateless compiler producing CompiledExecutables for GPU clients."""

    platform_name = GPU_PLATFORM_NAME

    def compile(
        self,
        options: CompileOptions | None,
        program: Lowerable,
        topology: TopologyDescription,
        client: TopologyProvider | None = None,
    ) -> CompiledExecutable:
        options = options or CompileOptions()
        if program is None or not isinstance(program, Lowerable):
            raise InvalidArgumentError(
                f"program must be a lowerable program representation, got {type(program).__name__}"
            )
        if not isinstance(topology, TopologyDescription):
            raise InvalidArgumentError(f"topology is required, got {type(topology).__name__}")

        gate = check_compile_target(topology, client)
        logger.debug("Compile gate for %s: %s", topology.device_ids, gate.value)
        if gate is GateResult.NO_CLIENT:
            raise UnimplementedError(
                "Compilation without a client is not supported: this backend needs a "
                "live client to query device state"
            )
        if gate is GateResult.TOPOLOGY_MISMATCH:
            raise UnimplementedError(
                f"Compilation for topology {topology} is not supported: it differs from "
                "the topology of the supplied client"
            )

        lowered = program.lower()
        if not isinstance(lowered, Program):
            raise InvalidArgumentError(f"lower() must return a Program, got {type(lowered).__name__}")
        if lowered.output_arity == 0:
            raise InvalidArgumentError(f"Program '{lowered.name}' has no outputs")

        violations = check_constraints(lowered)
        if violations:
            msgs = "\n".join(f"  - [{v.node_name}] {v.message}" for v in violations)
            raise CompilationError(f"Program constraint violations:\n{msgs}")

        plan = generate_execution_plan(lowered, options, topology)
        executable = CompiledExecutable(
            name=lowered.name,
            plan=plan,
            topology=topology,
            fingerprint=lowered.fingerprint(),
            compile_options=options,
        )
        logger.info(
            "Compiled '%s': %d kernel(s), %d replica(s) on devices %s",
            lowered.name, len(plan.kernel_calls), len(plan.device_assignment), plan.device_assignment,
        )
        return executable
