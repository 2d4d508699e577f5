"""
Servelane: reconciliation core for realtime inference APIs.

Converges the workload, endpoint and routing objects of each API on a
Kubernetes cluster, guards in-flight rollouts and keeps one autoscaler
loop alive per deployed API.
"""

__version__ = "0.1.0"
__description__ = "Reconciliation core for realtime inference APIs on Kubernetes"

__all__ = [
    "__version__",
    "__description__",
]
