"""Module responsible for deleting retired instance profiles of a NodeClass.

In this context, a retired profile can be deleted once no live instance is
launched with it anymore. Profiles that are still in use are kept, and checked
again in the next reconciliation.
"""

import logging
from typing import List

from instance_profiles.classes import InstanceProfilesStatus
from instance_profiles.interfaces import InstanceInventory, ProfileStore

log = logging.getLogger(__name__)


class GarbageCollector:
    """Delete the retired profiles that no live instance uses.

    Args:
        profile_store: The store to delete instance profiles from.
        inventory: The inventory to look up the instances using a profile.
    """

    def __init__(self, profile_store: ProfileStore, inventory: InstanceInventory):
        self.profile_store = profile_store
        self.inventory = inventory

    def collect(self, state: InstanceProfilesStatus) -> List[str]:
        """Delete unused profiles from the previous profiles of the state.

        Profiles are checked from the most recently retired to the oldest one.
        The first failure aborts the pass, but profiles deleted before it stay
        removed from the state.

        Args:
            state: The rotation record of a NodeClass, its previous list is mutated in place.

        Returns:
            The names of the deleted profiles.

        Raises:
            QueryError: If the instances using a profile couldn't be looked up.
            ProviderError: If an unused profile couldn't be deleted.
        """
        deleted: List[str] = []

        # Removing index i never shifts the older entries at indices < i
        for i in range(len(state.previous) - 1, -1, -1):
            profile_name = state.previous[i]

            instances = self.inventory.query(profile_name)
            if instances:
                log.info(
                    "Instance profile %s is used by %d instances. Keeping it.",
                    profile_name,
                    len(instances),
                )
                continue

            log.info("No instances use instance profile %s. Deleting it.", profile_name)
            self.profile_store.delete(profile_name)
            del state.previous[i]
            deleted.append(profile_name)

        return deleted
