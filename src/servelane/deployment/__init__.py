"""
Realtime API deployment: materialization, equality, rollout tracking,
autoscaler lifecycle and the reconciler that ties them together.
"""

from servelane.deployment.autoscaler import AutoscalerRegistry, bounds_autoscaler_factory
from servelane.deployment.models import APIIdentity, APISpec, Autoscaling, DesiredConfig
from servelane.deployment.reconciler import APIReconciler, ClusterObjects

__all__ = [
    "APIReconciler",
    "ClusterObjects",
    "AutoscalerRegistry",
    "bounds_autoscaler_factory",
    "APIIdentity",
    "APISpec",
    "Autoscaling",
    "DesiredConfig",
]
