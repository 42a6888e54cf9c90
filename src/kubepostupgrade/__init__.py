"""
kube-postupgrade - Post-upgrade reconciliation of Kubernetes cluster state
"""

__version__ = "0.1.0"

from .core import PostUpgradeOrchestrator, perform_post_upgrade_tasks
from .errors import AggregateError, PostUpgradeError
from .models import ClusterConfiguration, UpgradeContext

__all__ = [
    "AggregateError",
    "ClusterConfiguration",
    "PostUpgradeError",
    "PostUpgradeOrchestrator",
    "UpgradeContext",
    "perform_post_upgrade_tasks",
]
