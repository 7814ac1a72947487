"""LoadedExecutable: a compiled plan bound to a client's devices.

Architecture:
    load() hands the ExecutionPlan to a LoadedExecutable which resolves every
    kernel name against the kernel table and (by default) uploads the plan's
    constants to each replica's device. execute() validates the argument
    lists, allocates one set of pending output buffers per replica, then runs
    each replica on its device stream and waits for all of them.

Design trade-offs:
    - The client is held through a weak reference. A loaded executable does
      not keep its client alive; executing after the client is closed or
      collected is an ExecutionError, while delete() stays safe.

    - Outputs are all-or-nothing: if any replica fails, every output buffer
      of that call is freed before the error propagates.
"""

from __future__ import annotations

import logging
import threading
import weakref
from concurrent.futures import wait
from typing import TYPE_CHECKING, Sequence

import numpy as np

from gpu_compiler.codegen import ExecutionPlan, KernelCall
from gpu_compiler.dtypes import to_numpy_dtype
from gpu_compiler.errors import (
    ExecutionError,
    InvalidArgumentError,
    ResourceBindingError,
    ResourceExhaustedError,
)
from gpu_compiler.options import ExecuteOptions, LoadOptions
from gpu_compiler.program import TensorSpec
from gpu_runtime.backend import DeviceBuffer
from gpu_runtime.buffer import SimBuffer
from gpu_runtime.device import Device
from gpu_runtime.kernels import KERNELS, materialize_constant

if TYPE_CHECKING:
    from gpu_runtime.backend import Client

logger = logging.getLogger(__name__)


class LoadedExecutable:
    """Executes an ExecutionPlan on one device per replica."""

    def __init__(
        self,
        client: Client,
        name: str,
        plan: ExecutionPlan,
        devices: list[Device],
        fingerprint: str = "",
        options: LoadOptions | None = None,
    ):
        self._client_ref = weakref.ref(client)
        self._name = name
        self._plan = plan
        self._devices = list(devices)
        self._fingerprint = fingerprint
        self._options = options or LoadOptions()
        self._lock = threading.Lock()
        self._execution_count = 0
        self._deleted = False
        self._constant_buffers: list[dict[str, SimBuffer]] = []

        missing = sorted({c.kernel_name for c in plan.kernel_calls if c.kernel_name not in KERNELS})
        if missing:
            raise ResourceBindingError(f"No runtime kernels for {missing} in '{name}'")
        self._kernels = [KERNELS[c.kernel_name] for c in plan.kernel_calls]
        self._constant_specs = {
            b.name: b for b in plan.buffer_allocations if b.kind == "constant"
        }

        if self._options.preallocate_constants:
            try:
                for device in self._devices:
                    self._constant_buffers.append({
                        name: SimBuffer.from_numpy(self._constant_value(name), device)
                        for name in plan.constants
                    })
            except ResourceExhaustedError:
                self._free_constants()
                raise

    def __repr__(self) -> str:
        return f"LoadedExecutable(name={self._name!r}, devices={[d.id for d in self._devices]})"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.delete()
        return False

    def __del__(self):
        if not getattr(self, "_deleted", True):
            self.delete()

    @property
    def name(self) -> str:
        return self._name

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    @property
    def num_replicas(self) -> int:
        return len(self._devices)

    @property
    def addressable_devices(self) -> list[Device]:
        return list(self._devices)

    @property
    def input_specs(self) -> list[TensorSpec]:
        return list(self._plan.input_specs)

    @property
    def output_specs(self) -> list[TensorSpec]:
        return list(self._plan.output_specs)

    @property
    def execution_count(self) -> int:
        return self._execution_count

    @property
    def is_deleted(self) -> bool:
        return self._deleted

    @property
    def client(self) -> Client | None:
        return self._client_ref()

    def delete(self):
        """Release device-resident constants. Safe to call repeatedly."""
        with self._lock:
            if self._deleted:
                return
            self._deleted = True
        self._free_constants()
        logger.debug("Deleted loaded executable '%s'", self._name)

    def _free_constants(self):
        for buffers in self._constant_buffers:
            for buf in buffers.values():
                buf.delete()
        self._constant_buffers = []

    def _constant_value(self, name: str) -> np.ndarray:
        spec = self._constant_specs[name]
        return materialize_constant(self._plan.constants[name], spec.shape, spec.dtype)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(
        self,
        argument_handles: Sequence[Sequence[DeviceBuffer]],
        options: ExecuteOptions | None = None,
    ) -> list[list[DeviceBuffer]]:
        """Run every replica and return one list of result buffers per replica.

        argument_handles holds one argument list per execution instance; a
        zero-parameter program on one device is executed with [[]].
        """
        options = options or ExecuteOptions()
        if self._deleted:
            raise ExecutionError(f"Loaded executable '{self._name}' has been deleted")
        client = self._client_ref()
        if client is None or client.is_closed:
            raise ExecutionError(f"The client that loaded '{self._name}' is no longer usable")
        if len(argument_handles) != len(self._devices):
            raise ExecutionError(
                f"Execution supplied {len(argument_handles)} argument list(s) but '{self._name}' "
                f"is loaded on {len(self._devices)} device(s)"
            )
        for replica, (device, args) in enumerate(zip(self._devices, argument_handles)):
            self._check_arguments(replica, device, args, options)

        results: list[list[SimBuffer]] = []
        try:
            for device in self._devices:
                results.append([
                    SimBuffer.allocate(device, spec.shape, to_numpy_dtype(spec.dtype))
                    for spec in self._plan.output_specs
                ])
            self._dispatch(argument_handles, results, getattr(client, "asynchronous", False))
        except ResourceExhaustedError as e:
            self._free_results(results)
            raise ExecutionError(f"Out of device memory while executing '{self._name}': {e}") from e
        except Exception:
            self._free_results(results)
            raise

        with self._lock:
            self._execution_count += 1
        logger.debug("Executed '%s' on devices %s", self._name, [d.id for d in self._devices])
        return results

    def _check_arguments(self, replica: int, device: Device, args, options: ExecuteOptions):
        specs = self._plan.input_specs
        if len(args) != len(specs):
            raise ExecutionError(
                f"Execution instance {replica} of '{self._name}' supplied {len(args)} argument(s); "
                f"the program takes {len(specs)}"
            )
        for i, (buf, spec) in enumerate(zip(args, specs)):
            if not isinstance(buf, DeviceBuffer):
                raise ExecutionError(f"Argument {i} of instance {replica} is not a device buffer")
            if buf.is_deleted:
                raise ExecutionError(f"Argument {i} of instance {replica} has been deleted")
            if buf.device is not device:
                where = "a device of another client" if buf.device.id == device.id else f"device {buf.device.id}"
                raise ExecutionError(
                    f"Argument {i} of instance {replica} is on {where}, expected device {device.id}"
                )
            expected_dtype = to_numpy_dtype(spec.dtype)
            if options.strict_shape_checking:
                mismatch = tuple(buf.shape) != spec.shape or buf.dtype != expected_dtype
            else:
                mismatch = int(np.prod(buf.shape, dtype=np.int64)) != spec.num_elements
            if mismatch:
                raise ExecutionError(
                    f"Argument {i} ('{spec.name}') of instance {replica}: expected "
                    f"{spec.dtype}{list(spec.shape)}, got {buf.dtype}{list(buf.shape)}"
                )

    def _dispatch(self, argument_handles, results: list[list[SimBuffer]], asynchronous: bool):
        work = list(zip(self._devices, argument_handles, results))
        if not asynchronous:
            for replica, (device, args, outputs) in enumerate(work):
                self._run_replica(replica, device, args, outputs)
            return
        futures = [
            device.submit(self._run_replica, replica, device, args, outputs)
            for replica, (device, args, outputs) in enumerate(work)
        ]
        wait(futures)
        for future in futures:
            future.result()

    def _run_replica(self, replica: int, device: Device, args, outputs: list[SimBuffer]):
        env: dict[str, np.ndarray] = {}
        for i, (buf, spec) in enumerate(zip(args, self._plan.input_specs)):
            try:
                value = buf.to_numpy()
            except InvalidArgumentError as e:
                raise ExecutionError(f"Argument {i} of instance {replica}: {e}") from e
            expected = to_numpy_dtype(spec.dtype)
            if value.shape != spec.shape or value.dtype != expected:
                value = value.astype(expected).reshape(spec.shape)
            env[spec.name] = value

        resident = self._constant_buffers
        scratch: list[int] = []
        try:
            if resident:
                for name, buf in resident[replica].items():
                    try:
                        env[name] = buf.to_numpy()
                    except InvalidArgumentError as e:
                        raise ExecutionError(
                            f"Constant '{name}' of '{self._name}' was released during execution"
                        ) from e
            else:
                for name in self._plan.constants:
                    scratch.append(device.allocate(self._constant_specs[name].size_bytes))
                    env[name] = self._constant_value(name)
            if self._plan.temp_bytes:
                scratch.append(device.allocate(self._plan.temp_bytes))

            with np.errstate(all="ignore"):
                for call, kernel in zip(self._plan.kernel_calls, self._kernels):
                    env[call.output_buffers[0]] = self._launch(call, kernel, env, device)
        finally:
            for handle in scratch:
                device.free(handle)

        for buf, spec in zip(outputs, self._plan.output_specs):
            buf._fulfill(env[spec.name])

    def _launch(self, call: KernelCall, kernel, env: dict[str, np.ndarray], device: Device) -> np.ndarray:
        try:
            return kernel([env[name] for name in call.input_buffers], call.params)
        except Exception as e:
            raise ExecutionError(
                f"Kernel {call.kernel_name} ({', '.join(call.output_buffers)}) failed "
                f"on device {device.id}: {e}"
            ) from e

    @staticmethod
    def _free_results(results: list[list[SimBuffer]]):
        for outputs in results:
            for buf in outputs:
                buf.delete()
