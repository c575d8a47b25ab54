"""Deterministic names and tags for the instance profiles of a NodeClass."""

import hashlib
from typing import Dict

from instance_profiles.classes import NodeClass

TAG_CLUSTER_PREFIX = "kubernetes.io/cluster/"
TAG_MANAGED_BY = "karpenter.sh/managed-by"
TAG_NODECLASS = "karpenter.k8s.aws/ec2nodeclass"
TAG_REGION = "topology.kubernetes.io/region"


def _hash(value: str) -> int:
    # unsigned 64 bit, stable across processes unlike hash()
    return int.from_bytes(hashlib.sha256(value.encode("utf-8")).digest()[:8], "big")


def instance_profile_name(
    cluster_name: str, region: str, nodeclass_name: str, version: int
) -> str:
    """Return the name of the instance profile for a version of a NodeClass.

    The same inputs always produce the same name, so retrying a failed rotation
    targets the same profile, while every new version produces a new name.

    Args:
        cluster_name: The name of the K8s cluster.
        region: The AWS region of the profile.
        nodeclass_name: The name of the NodeClass the profile belongs to.
        version: The rotation version the profile is created for.

    Returns:
        The instance profile name.
    """
    return "%s_%d" % (cluster_name, _hash("%s%s%d" % (region, nodeclass_name, version)))


def instance_profile_tags(cluster_name: str, region: str, nodeclass: NodeClass) -> Dict[str, str]:
    """Return the tags to create the instance profile of a NodeClass with.

    The user provided tags of the NodeClass are applied first, so they can't
    override the tags used for ownership.

    Args:
        cluster_name: The name of the K8s cluster.
        region: The AWS region of the profile.
        nodeclass: The NodeClass the profile belongs to.

    Returns:
        A dictionary with the tags.
    """
    tags = dict(nodeclass.spec.tags)
    tags.update(
        {
            TAG_CLUSTER_PREFIX + cluster_name: "owned",
            TAG_MANAGED_BY: cluster_name,
            TAG_NODECLASS: nodeclass.name,
            TAG_REGION: region,
        }
    )
    return tags
