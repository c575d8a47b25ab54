"""Instance profile store backed by AWS IAM, via boto3."""

import logging
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from instance_profiles.interfaces import ProfileNotFoundError, ProviderError

log = logging.getLogger(__name__)


def error_code(err: Exception) -> Optional[str]:
    """Return the AWS error code of a ClientError, or None for any other exception."""
    if isinstance(err, ClientError):
        return err.response.get("Error", {}).get("Code")
    return None


class IamProfileStore:
    """Store of IAM instance profiles.

    Args:
        iam_client: Boto3 IAM client.
    """

    def __init__(self, iam_client: Any):
        self.iam = iam_client

    def _get_profile(self, name: str) -> Dict[str, Any]:
        try:
            return self.iam.get_instance_profile(InstanceProfileName=name)["InstanceProfile"]
        except ClientError as e:
            if error_code(e) == "NoSuchEntity":
                raise ProfileNotFoundError(name, e) from e
            raise ProviderError("getting", name, e) from e
        except BotoCoreError as e:
            raise ProviderError("getting", name, e) from e

    def _bound_roles(self, profile: Dict[str, Any]) -> List[str]:
        return [role["RoleName"] for role in profile.get("Roles", [])]

    def get(self, name: str) -> Optional[str]:
        """Return the role bound to the instance profile, or None if it has no role.

        Args:
            name: The name of the instance profile.

        Returns:
            The name of the first role of the instance profile, or None.

        Raises:
            ProfileNotFoundError: If the instance profile doesn't exist.
            ProviderError: If the instance profile couldn't be fetched.
        """
        roles = self._bound_roles(self._get_profile(name))
        return roles[0] if roles else None

    def create(self, name: str, role: str, tags: Dict[str, str]) -> None:
        """Create the instance profile and bind it to a role.

        If the instance profile already exists it is reused, and any role other
        than the given one is removed from it.

        Args:
            name: The name of the instance profile.
            role: The name of the IAM role to bind.
            tags: The tags to create the instance profile with.

        Raises:
            ProviderError: If the instance profile couldn't be created or bound to the role.
        """
        # A fresh profile is taken from the create response, IAM reads are eventually consistent
        try:
            log.info("Creating instance profile %s", name)
            profile = self.iam.create_instance_profile(
                InstanceProfileName=name,
                Tags=[{"Key": key, "Value": value} for key, value in tags.items()],
            )["InstanceProfile"]
        except ClientError as e:
            if error_code(e) != "EntityAlreadyExists":
                raise ProviderError("creating", name, e) from e
            log.info("Instance profile %s already exists, reusing it.", name)
            profile = self._get_profile(name)
        except BotoCoreError as e:
            raise ProviderError("creating", name, e) from e

        bound_roles = self._bound_roles(profile)
        try:
            for bound_role in bound_roles:
                if bound_role != role:
                    log.info("Removing role %s from instance profile %s", bound_role, name)
                    self.iam.remove_role_from_instance_profile(
                        InstanceProfileName=name, RoleName=bound_role
                    )

            if role not in bound_roles:
                log.info("Adding role %s to instance profile %s", role, name)
                self.iam.add_role_to_instance_profile(InstanceProfileName=name, RoleName=role)
        except (ClientError, BotoCoreError) as e:
            raise ProviderError("adding role %s to" % role, name, e) from e

    def delete(self, name: str) -> None:
        """Remove all roles from the instance profile and delete it.

        An instance profile that doesn't exist is considered deleted.

        Args:
            name: The name of the instance profile.

        Raises:
            ProviderError: If the instance profile couldn't be deleted.
        """
        try:
            profile = self._get_profile(name)
        except ProfileNotFoundError:
            log.info("Instance profile %s doesn't exist, nothing to delete.", name)
            return

        try:
            for role in self._bound_roles(profile):
                log.info("Removing role %s from instance profile %s", role, name)
                self.iam.remove_role_from_instance_profile(InstanceProfileName=name, RoleName=role)

            log.info("Deleting instance profile %s", name)
            self.iam.delete_instance_profile(InstanceProfileName=name)
        except ClientError as e:
            if error_code(e) == "NoSuchEntity":
                log.info("Instance profile %s was already deleted.", name)
                return
            raise ProviderError("deleting", name, e) from e
        except BotoCoreError as e:
            raise ProviderError("deleting", name, e) from e
