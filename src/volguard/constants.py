"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "CLUSTER_INSTANCE_LABEL",
    "CLUSTER_MANAGED_BY_LABEL",
    "CLUSTER_MANAGER",
    "CONFIGURATION_PATH",
    "CONFIGURATION_PATH_ENV",
    "DEFAULT_CAPACITY_QUERY",
    "DEFAULT_FIXED_FREE_BYTES",
    "KUBEBLOCKS_GROUP",
    "KUBEBLOCKS_VERSION",
    "KUBERNETES_REQUEST_TIMEOUT",
    "METRICS_INTERVAL",
    "RECONCILE_INTERVAL",
    "RESIZE_ANNOTATION",
    "RESIZE_TIMEOUT",
    "SELECTED_NODE_ANNOTATION",
]

CLUSTER_INSTANCE_LABEL = "app.kubernetes.io/instance"
"""Label KubeBlocks sets on pods to the name of the owning cluster."""

CLUSTER_MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
"""Label identifying the operator that manages a pod."""

CLUSTER_MANAGER = "kubeblocks"
"""Value of the managed-by label for pods belonging to a KubeBlocks cluster."""

CONFIGURATION_PATH = Path("/etc/volguard/config.yaml")
"""Default path to the configuration."""

CONFIGURATION_PATH_ENV = "VOLGUARD_CONFIG_PATH"
"""Environment variable that overrides the configuration path."""

DEFAULT_CAPACITY_QUERY = 'sum(lvm_vgs_total_free{{node="{node}"}})'
"""PromQL template used to find the free volume group space of a node.

The ``{node}`` placeholder is replaced with the node name. The metric is the
one published by the volguard node agent.
"""

DEFAULT_FIXED_FREE_BYTES = 1024 * 1024 * 1024
"""Free capacity reported by the oracle when running in fixed mode."""

KUBEBLOCKS_GROUP = "apps.kubeblocks.io"
"""API group of KubeBlocks ``Cluster`` and ``OpsRequest`` objects."""

KUBEBLOCKS_VERSION = "v1alpha1"
"""API version of KubeBlocks objects."""

KUBERNETES_REQUEST_TIMEOUT = timedelta(seconds=30)
"""How long to wait for one-off sequences of Kubernetes API calls."""

METRICS_INTERVAL = timedelta(seconds=10)
"""How frequently the node agent refreshes volume group metrics."""

RECONCILE_INTERVAL = timedelta(hours=1)
"""How frequently the node agent reconciles logical volume sizes."""

RESIZE_ANNOTATION = "deploy.cloud.sealos.io/resize"
"""Annotation on a ``StatefulSet`` carrying the requested volume size."""

RESIZE_TIMEOUT = timedelta(minutes=2)
"""How long a single logical volume resize may take."""

SELECTED_NODE_ANNOTATION = "volume.kubernetes.io/selected-node"
"""Annotation set by the scheduler on a PVC naming the node it is bound to."""
