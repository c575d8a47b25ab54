"""Utility module for manipulating EC2NodeClasses."""

import logging
from typing import Iterator

import tenacity
from lightkube import Client
from lightkube.generic_resource import GenericGlobalResource, create_global_resource
from lightkube.types import PatchType

from instance_profiles.classes import NodeClass, NodeClassStatus
from instance_profiles.helpers import k8s

EC2NodeClassLightkube = create_global_resource(
    group="karpenter.k8s.aws", version="v1", kind="EC2NodeClass", plural="ec2nodeclasses"
)

log = logging.getLogger(__name__)


def list_nodeclasses(client: Client) -> Iterator[GenericGlobalResource]:
    """Return all EC2NodeClass CRs in the cluster.

    Args:
        client: The lightkube client to use

    Returns:
        Iterator of EC2NodeClasses in the cluster.

    Raises:
        ApiError: From lightkube, if there was an error.
    """
    return client.list(EC2NodeClassLightkube)


def nodeclass_from_lightkube(resource: GenericGlobalResource) -> NodeClass:
    """Create a NodeClass class instance from a lightkube EC2NodeClass.

    Args:
        resource: The lightkube EC2NodeClass to convert.

    Returns:
        The NodeClass, with only the fields relevant to instance profiles.

    Raises:
        ValidationError: From pydantic if the EC2NodeClass is not valid.
    """
    return NodeClass.model_validate(
        {
            "name": k8s.get_name(resource),
            "generation": resource.metadata.generation,
            "spec": resource.get("spec") or {},
            "status": resource.get("status") or {},
        }
    )


@tenacity.retry(
    retry=tenacity.retry_if_exception(k8s.is_transient_api_error),
    stop=tenacity.stop_after_attempt(5),
    wait=tenacity.wait_fixed(2),
    reraise=True,
)
def patch_nodeclass_status(client: Client, name: str, status: NodeClassStatus):
    """Persist the instance profile fields of a NodeClass status.

    Conflicts and server side errors are retried, any other error is raised
    immediately.

    Args:
        client: The lightkube client to use.
        name: The name of the EC2NodeClass to patch.
        status: The status to write in the status subresource.

    Raises:
        ApiError: From lightkube, if the patch failed.
    """
    patch = {"status": status.model_dump(mode="json", by_alias=True, exclude_none=True)}
    client.patch(
        EC2NodeClassLightkube.Status, name=name, obj=patch, patch_type=PatchType.MERGE
    )
    log.info("Successfully patched status of EC2NodeClass: %s", name)
