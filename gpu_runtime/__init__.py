from gpu_runtime.backend import Client, DeviceBuffer
from gpu_runtime.buffer import SimBuffer
from gpu_runtime.client import SimulatedGpuClient, get_gpu_client
from gpu_runtime.device import AllocatorConfig, Device
from gpu_runtime.executor import LoadedExecutable
from gpu_runtime.kernels import KERNELS
from gpu_runtime.profiler import ProfileResult, profile

__all__ = [
    "Client",
    "DeviceBuffer",
    "SimBuffer",
    "SimulatedGpuClient",
    "get_gpu_client",
    "AllocatorConfig",
    "Device",
    "LoadedExecutable",
    "KERNELS",
    "ProfileResult",
    "profile",
]
