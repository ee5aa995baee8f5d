"""
Capability probes for the local backend kinds.

Each probe returns a CapabilityReport and never raises for "not available":
a missing library or a CPU-only build is a normal answer, not an error.
"""

from __future__ import annotations

import logging
import os

from ayo_offline.router.types import CapabilityReport

logger = logging.getLogger(__name__)


def _import_engine():
    import llama_cpp

    return llama_cpp


def probe_accelerator() -> CapabilityReport:
    """Available iff llama-cpp-python is installed with GPU offload support."""
    try:
        llama_cpp = _import_engine()
    except (ImportError, OSError) as e:
        return CapabilityReport(
            available=False,
            reason=f"Local engine not installed ({e})",
            reason_code="engine_missing",
        )

    supports_offload = getattr(llama_cpp, "llama_supports_gpu_offload", None)
    if supports_offload is None or not supports_offload():
        return CapabilityReport(
            available=False,
            reason="Local engine was built without GPU offload",
            reason_code="no_gpu_offload",
        )
    return CapabilityReport(
        available=True,
        details={"engine_version": getattr(llama_cpp, "__version__", "unknown")},
    )


def probe_cpu() -> CapabilityReport:
    """Available iff llama-cpp-python imports. Reports core count."""
    cores = os.cpu_count() or 1
    try:
        llama_cpp = _import_engine()
    except (ImportError, OSError) as e:
        return CapabilityReport(
            available=False,
            reason=f"Local engine not installed ({e})",
            reason_code="engine_missing",
            details={"cpu_count": cores},
        )
    return CapabilityReport(
        available=True,
        details={
            "cpu_count": cores,
            "multi_threaded": cores > 1,
            "engine_version": getattr(llama_cpp, "__version__", "unknown"),
        },
    )
