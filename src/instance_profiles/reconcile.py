"""Module responsible for reconciling the instance profiles of EC2NodeClasses.

This module includes both
1. the ReconcileDriver, which runs a single reconciliation cycle for one NodeClass
2. the functions that run the driver for all NodeClasses in the cluster and
   persist the results

A reconciliation cycle first rotates the instance profile if the role of the
NodeClass drifted, and then deletes retired profiles that are no longer in use.
"""

import logging
from typing import Any, Dict, List, Tuple

from lightkube import Client
from lightkube.core.exceptions import ApiError
from pydantic import ValidationError

from instance_profiles.classes import (
    CONDITION_INSTANCE_PROFILE_READY,
    ConditionStatus,
    InstanceProfilesStatus,
    NodeClass,
    NodeClassStatus,
    ReconcileOptions,
)
from instance_profiles.garbage_collect import GarbageCollector
from instance_profiles.helpers.k8s import get_name
from instance_profiles.helpers.nodeclasses import (
    list_nodeclasses,
    nodeclass_from_lightkube,
    patch_nodeclass_status,
)
from instance_profiles.interfaces import InstanceInventory, ProfileStore, ProviderError, QueryError
from instance_profiles.rotate import RoleReconciler

log = logging.getLogger(__name__)


class ReconcileDriver:
    """Run the reconciliation cycle of the instance profile of a NodeClass.

    The caller must not run the driver concurrently for the same NodeClass.

    Args:
        profile_store: The store of instance profiles.
        inventory: The inventory of instances.
        options: The cluster wide options.
    """

    def __init__(
        self,
        profile_store: ProfileStore,
        inventory: InstanceInventory,
        options: ReconcileOptions,
    ):
        self.role_reconciler = RoleReconciler(profile_store, options)
        self.garbage_collector = GarbageCollector(profile_store, inventory)

    def run(self, nodeclass: NodeClass) -> NodeClassStatus:
        """Reconcile the instance profile of a NodeClass.

        The NodeClass itself is not modified. The returned status should be
        persisted by the caller, and if an error is raised nothing should be
        persisted.

        Args:
            nodeclass: The NodeClass to reconcile.

        Returns:
            The updated status of the NodeClass.

        Raises:
            ProviderError: If a profile couldn't be created or deleted.
            QueryError: If the instances using a retired profile couldn't be looked up.
        """
        status = nodeclass.status.model_copy(deep=True)

        if not nodeclass.spec.role:
            log.info(
                "NodeClass %s uses instance profile %s.",
                nodeclass.name,
                nodeclass.spec.instance_profile,
            )
            status.instance_profile = nodeclass.spec.instance_profile
            self._set_ready(nodeclass, status)
            return status

        if status.instance_profiles is None:
            status.instance_profiles = InstanceProfilesStatus()
        state = status.instance_profiles

        log.info("Reconciling role of NodeClass %s", nodeclass.name)
        self.role_reconciler.reconcile(nodeclass, state)
        status.instance_profile = state.current

        # Runs on every cycle, instances may have been terminated since the last one
        log.info("Garbage collecting instance profiles of NodeClass %s", nodeclass.name)
        self.garbage_collector.collect(state)

        self._set_ready(nodeclass, status)
        return status

    def _set_ready(self, nodeclass: NodeClass, status: NodeClassStatus):
        status.set_condition(
            CONDITION_INSTANCE_PROFILE_READY,
            ConditionStatus.TRUE,
            reason=CONDITION_INSTANCE_PROFILE_READY,
            observed_generation=nodeclass.generation,
        )


def reconcile_all_nodeclasses(
    client: Client, driver: ReconcileDriver
) -> Tuple[List[str], Dict[str, Exception]]:
    """Reconcile the instance profiles of all EC2NodeClasses in the cluster.

    A failure for one NodeClass doesn't stop the others from being reconciled.
    The status of a NodeClass is only patched if its reconciliation succeeded.

    Args:
        client: The lightkube client to use.
        driver: The driver to reconcile each NodeClass with.

    Returns:
        The names of the NodeClasses whose status was patched, and the errors of the
        NodeClasses that failed, with the NodeClass names as keys.

    Raises:
        ApiError: From lightkube if the EC2NodeClasses couldn't be listed.
    """
    log.info("Fetching all EC2NodeClasses in the cluster")
    reconciled: List[str] = []
    failed: Dict[str, Exception] = {}

    for resource in list_nodeclasses(client):
        name = get_name(resource)
        try:
            nodeclass = nodeclass_from_lightkube(resource)
            status = driver.run(nodeclass)
            patch_nodeclass_status(client, name, status)
        except (ProviderError, QueryError, ApiError, ValidationError) as e:
            log.error("Failed to reconcile instance profile of EC2NodeClass %s: %s", name, e)
            failed[name] = e
            continue
        reconciled.append(name)

    return reconciled, failed


def list_instance_profiles(client: Client) -> Dict[str, Dict[str, Any]]:
    """Return the instance profiles of all EC2NodeClasses with a role.

    Args:
        client: The lightkube client to use.

    Returns:
        The current, previous and version of each NodeClass, with the NodeClass
        names as keys.

    Raises:
        ApiError: From lightkube if the EC2NodeClasses couldn't be listed.
    """
    profiles: Dict[str, Dict[str, Any]] = {}
    for resource in list_nodeclasses(client):
        name = get_name(resource)
        try:
            nodeclass = nodeclass_from_lightkube(resource)
        except ValidationError as e:
            log.warning("Skipping invalid EC2NodeClass %s: %s", name, e)
            continue

        if nodeclass.status.instance_profiles is not None:
            profiles[name] = nodeclass.status.instance_profiles.model_dump()

    return profiles
