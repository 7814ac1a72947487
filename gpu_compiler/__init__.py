from gpu_compiler.codegen import HANDLED_OPS as HANDLED_OPS
from gpu_compiler.codegen import ExecutionPlan as ExecutionPlan
from gpu_compiler.codegen import generate_execution_plan as generate_execution_plan
from gpu_compiler.compiled_program import CompiledExecutable
from gpu_compiler.compiler import GateResult as GateResult
from gpu_compiler.compiler import GpuCompiler, TopologyProvider
from gpu_compiler.compiler import check_compile_target as check_compile_target
from gpu_compiler.constraint_checker import check_constraints as check_constraints
from gpu_compiler.errors import CompilationError as CompilationError
from gpu_compiler.errors import ExecutionError as ExecutionError
from gpu_compiler.errors import GpuBackendError as GpuBackendError
from gpu_compiler.errors import InvalidArgumentError as InvalidArgumentError
from gpu_compiler.errors import ProgramParseError as ProgramParseError
from gpu_compiler.errors import ResourceBindingError as ResourceBindingError
from gpu_compiler.errors import ResourceExhaustedError as ResourceExhaustedError
from gpu_compiler.errors import UnimplementedError as UnimplementedError
from gpu_compiler.hlo_text import XlaComputation as XlaComputation
from gpu_compiler.hlo_text import parse_hlo_module as parse_hlo_module
from gpu_compiler.mlir_text import MlirModule as MlirModule
from gpu_compiler.mlir_text import parse_mlir_module as parse_mlir_module
from gpu_compiler.options import CompileOptions
from gpu_compiler.options import ExecuteOptions as ExecuteOptions
from gpu_compiler.options import LoadOptions as LoadOptions
from gpu_compiler.program import Lowerable
from gpu_compiler.program import Program as Program
from gpu_compiler.program import TensorSpec as TensorSpec
from gpu_compiler.program import load_program as load_program
from gpu_compiler.program import load_program_from_dict as load_program_from_dict
from gpu_compiler.program import parse_program as parse_program
from gpu_compiler.topology import GPU_PLATFORM_ID as GPU_PLATFORM_ID
from gpu_compiler.topology import GPU_PLATFORM_NAME as GPU_PLATFORM_NAME
from gpu_compiler.topology import TopologyDescription

_DEFAULT_COMPILER = GpuCompiler()


def compile(
    program: Lowerable,
    topology: TopologyDescription,
    client: TopologyProvider | None = None,
    options: CompileOptions | None = None,
) -> CompiledExecutable:
    """Compile a program for `topology` through the default GpuCompiler.

    Args:
        program: A Program, XlaComputation or MlirModule.
        topology: Target fleet; must equal the client's own topology.
        client: Live client the executable will be loaded on.
        options: Compile options (defaults if None).
    """
    return _DEFAULT_COMPILER.compile(options, program, topology, client)
