"""Boundary of the external collaborators consumed by the reconcilers.

The reconcilers never talk to IAM or EC2 directly. They depend on the two protocols
defined here, and the concrete boto3 implementations live in the helpers package.
"""

from typing import Dict, Optional, Protocol, Set


class ProviderError(Exception):
    """Exception for when an operation on an identity profile failed.

    Args:
        operation: The operation that failed, i.e. get, create or delete.
        profile_name: The name of the profile the operation was run against.
        cause: The underlying exception, if any.
    """

    def __init__(self, operation: str, profile_name: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.profile_name = profile_name
        self.cause = cause
        message = "%s instance profile %s" % (operation, profile_name)
        if cause is not None:
            message += ": %s" % cause
        super().__init__(message)


class ProfileNotFoundError(ProviderError):
    """Exception for when a profile doesn't exist in the identity provider."""

    def __init__(self, profile_name: str, cause: Optional[Exception] = None):
        super().__init__("getting", profile_name, cause)


class QueryError(Exception):
    """Exception for when the instance inventory couldn't be queried.

    Args:
        profile_name: The name of the profile whose instances were being looked up.
        cause: The underlying exception, if any.
    """

    def __init__(self, profile_name: str, cause: Optional[Exception] = None):
        self.profile_name = profile_name
        self.cause = cause
        message = "checking instances using profile %s" % profile_name
        if cause is not None:
            message += ": %s" % cause
        super().__init__(message)


class ProfileStore(Protocol):
    """Store of named identity profiles, each bound to at most one role."""

    def get(self, name: str) -> Optional[str]:
        """Return the role bound to the profile, or None if it has no role.

        Raises:
            ProfileNotFoundError: If the profile doesn't exist.
            ProviderError: For any other failure.
        """
        ...

    def create(self, name: str, role: str, tags: Dict[str, str]) -> None:
        """Create the profile bound to the role. Must be safe to retry.

        Raises:
            ProviderError: If the profile couldn't be created or bound.
        """
        ...

    def delete(self, name: str) -> None:
        """Delete the profile. Deleting a missing profile is not an error.

        Raises:
            ProviderError: If the profile couldn't be deleted.
        """
        ...


class InstanceInventory(Protocol):
    """Inventory of live compute instances."""

    def query(self, profile_name: str) -> Set[str]:
        """Return the ids of live instances bound to the profile.

        Raises:
            QueryError: If the inventory couldn't be queried.
        """
        ...
