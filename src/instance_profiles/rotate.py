"""Module responsible for rotating the instance profile of a NodeClass.

The instance profile of a NodeClass is rotated whenever the role bound to its
current profile doesn't match the role in the NodeClass spec. Rotation creates
a new profile and retires the old one, which stays around until no instance
uses it anymore.
"""

import logging
from typing import Optional

from instance_profiles.classes import InstanceProfilesStatus, NodeClass, ReconcileOptions
from instance_profiles.interfaces import ProfileStore, ProviderError
from instance_profiles.naming import instance_profile_name, instance_profile_tags

log = logging.getLogger(__name__)


class RoleReconciler:
    """Detect drift between the desired and bound role, and rotate the profile on drift.

    Args:
        profile_store: The store to look up and create instance profiles with.
        options: The cluster wide options, used for naming and tagging new profiles.
    """

    def __init__(self, profile_store: ProfileStore, options: ReconcileOptions):
        self.profile_store = profile_store
        self.options = options

    def bound_role(self, profile_name: str) -> Optional[str]:
        """Return the role bound to a profile, or None if it can't be determined.

        A failed lookup is treated the same as a profile without a role, so that
        the identity provider being briefly unavailable for reads doesn't block
        a rotation.

        Args:
            profile_name: The profile to look up. Empty if no profile exists yet.

        Returns:
            The name of the bound role, or None.
        """
        if not profile_name:
            return None

        try:
            return self.profile_store.get(profile_name)
        except ProviderError as e:
            log.warning("Couldn't get role of instance profile %s: %s", profile_name, e)
            return None

    def reconcile(
        self, nodeclass: NodeClass, state: InstanceProfilesStatus
    ) -> InstanceProfilesStatus:
        """Rotate the instance profile of the NodeClass if its role drifted.

        If the NodeClass has no role, it uses an externally managed profile and
        nothing happens. The state is only mutated after the new profile was
        created successfully.

        Args:
            nodeclass: The NodeClass whose role should be bound to the current profile.
            state: The rotation record of the NodeClass, mutated in place.

        Returns:
            The same state object.

        Raises:
            ProviderError: If the new instance profile couldn't be created.
        """
        desired_role = nodeclass.spec.role
        if not desired_role:
            log.info("NodeClass %s uses an external instance profile, skipping.", nodeclass.name)
            return state

        bound_role = self.bound_role(state.current)
        if bound_role == desired_role:
            log.info(
                "Instance profile %s is bound to role %s. Nothing to do.",
                state.current,
                desired_role,
            )
            return state

        log.info(
            "Role of instance profile '%s' is %s, expected %s. Rotating.",
            state.current,
            bound_role,
            desired_role,
        )
        cluster_name, region = self.options.cluster_name, self.options.region
        profile_name = instance_profile_name(
            cluster_name, region, nodeclass.name, state.version + 1
        )
        self.profile_store.create(
            profile_name,
            desired_role,
            instance_profile_tags(cluster_name, region, nodeclass),
        )

        state.rotate(profile_name)
        log.info(
            "Rotated NodeClass %s to instance profile %s (version %d).",
            nodeclass.name,
            profile_name,
            state.version,
        )
        return state
