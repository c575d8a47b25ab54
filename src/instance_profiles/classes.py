"""This module provides classes for validating and defining an EC2NodeClass.

The goal of these classes is to represent the parts of the EC2NodeClass custom
resource that the instance profile reconcilers care about in a more Pythonic
way, rather than a dict of values.

The classes should also provide some common helper methods for manipulating
the status, but not functions for directly affecting the K8s cluster or AWS.
"""

import logging
from datetime import datetime, timezone
from enum import StrEnum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

log = logging.getLogger(__name__)

CONDITION_INSTANCE_PROFILE_READY = "InstanceProfileReady"


class ConditionStatus(StrEnum):
    """Class representing the status of a K8s status condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Condition(BaseModel):
    """Class for a K8s status condition.

    Args:
        type: The type of the condition, i.e. InstanceProfileReady.
        status: One of True, False or Unknown.
        reason: Machine readable reason of the last transition.
        message: Human readable details about the last transition.
        last_transition_time: When the status last changed.
        observed_generation: The generation of the object the condition was set for.

    Raises:
        ValidationError: From pydantic if the validation failed.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_transition_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    observed_generation: Optional[int] = None


class InstanceProfilesStatus(BaseModel):
    """Class for the rotation record of the instance profiles of a NodeClass.

    Args:
        current: The profile that should be active. Empty if none was ever created.
        previous: Retired profiles, oldest first, that haven't been deleted yet.
        version: Number of rotations performed so far.

    Raises:
        ValidationError: From pydantic if the validation failed.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    current: str = ""
    previous: List[str] = []
    version: int = 0

    def rotate(self, profile_name: str) -> None:
        """Make a newly created profile the current one and retire the old one.

        Args:
            profile_name: The name of the profile that was just created.
        """
        self.version += 1
        if self.current:
            self.previous.append(self.current)
        self.current = profile_name


class NodeClassSpec(BaseModel):
    """Class for the spec fields of an EC2NodeClass related to instance profiles.

    Exactly one of role and instance_profile must be set. The rest of the spec
    is ignored.

    Args:
        role: The IAM role the instance profile of the nodes should be bound to.
        instance_profile: An existing, externally managed instance profile to use as is.
        tags: Tags to apply on the AWS resources created for the NodeClass.

    Raises:
        ValidationError: From pydantic if the validation failed.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    role: Optional[str] = None
    instance_profile: Optional[str] = None
    tags: Dict[str, str] = {}

    @model_validator(mode="after")
    def _role_xor_instance_profile(self) -> "NodeClassSpec":
        if bool(self.role) == bool(self.instance_profile):
            raise ValueError("must specify exactly one of ['role', 'instanceProfile']")
        return self


class NodeClassStatus(BaseModel):
    """Class for the status fields of an EC2NodeClass related to instance profiles.

    Args:
        instance_profile: The instance profile nodes of the NodeClass should launch with.
        instance_profiles: The rotation record, only set for NodeClasses with a role.
        conditions: The status conditions of the NodeClass.

    Raises:
        ValidationError: From pydantic if the validation failed.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    instance_profile: Optional[str] = None
    instance_profiles: Optional[InstanceProfilesStatus] = None
    conditions: List[Condition] = []

    def get_condition(self, condition_type: str) -> Optional[Condition]:
        """Return the condition with the given type, or None."""
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def set_condition(
        self,
        condition_type: str,
        status: ConditionStatus,
        reason: str,
        message: str = "",
        observed_generation: Optional[int] = None,
    ) -> None:
        """Set a condition, keeping its transition time if the status didn't change.

        Args:
            condition_type: The type of the condition to set.
            status: The new status of the condition.
            reason: Machine readable reason for the status.
            message: Human readable message for the status.
            observed_generation: The generation of the NodeClass that was reconciled.
        """
        existing = self.get_condition(condition_type)
        if existing is None:
            self.conditions.append(
                Condition(
                    type=condition_type,
                    status=status,
                    reason=reason,
                    message=message,
                    observed_generation=observed_generation,
                )
            )
            return

        if existing.status != status:
            existing.last_transition_time = datetime.now(timezone.utc)
        existing.status = status
        existing.reason = reason
        existing.message = message
        existing.observed_generation = observed_generation

    def is_ready(self) -> bool:
        """Check if the InstanceProfileReady condition is True."""
        condition = self.get_condition(CONDITION_INSTANCE_PROFILE_READY)
        return condition is not None and condition.status == ConditionStatus.TRUE


class NodeClass(BaseModel):
    """Class representing an EC2NodeClass.

    Args:
        name: The name of the NodeClass, from its metadata.
        generation: The generation of the NodeClass, from its metadata.
        spec: The spec of the NodeClass.
        status: The status of the NodeClass.

    Raises:
        ValidationError: From pydantic if the validation failed.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    generation: Optional[int] = None
    spec: NodeClassSpec
    status: NodeClassStatus = Field(default_factory=NodeClassStatus)


class ReconcileOptions(BaseModel):
    """Class for the cluster wide options of the reconcilers.

    Args:
        cluster_name: The name of the K8s cluster, used in profile names and tags.
        region: The AWS region the profiles and instances live in.

    Raises:
        ValidationError: From pydantic if the validation failed.
    """

    cluster_name: str = Field(min_length=1)
    region: str = Field(min_length=1)
