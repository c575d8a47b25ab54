"""Instance inventory backed by AWS EC2, via boto3."""

import logging
from typing import Any, Set

from botocore.exceptions import BotoCoreError, ClientError

from instance_profiles.interfaces import QueryError

log = logging.getLogger(__name__)

# Terminated instances are still listed for a while, but don't use their profile anymore
LIVE_INSTANCE_STATES = ["pending", "running", "shutting-down", "stopping", "stopped"]


class Ec2InstanceInventory:
    """Inventory of EC2 instances.

    Args:
        ec2_client: Boto3 EC2 client.
    """

    def __init__(self, ec2_client: Any):
        self.ec2 = ec2_client

    def query(self, profile_name: str) -> Set[str]:
        """Return the ids of the live instances launched with an instance profile.

        Args:
            profile_name: The name of the instance profile.

        Returns:
            The set of instance ids.

        Raises:
            QueryError: If the instances couldn't be described.
        """
        instance_ids: Set[str] = set()
        try:
            paginator = self.ec2.get_paginator("describe_instances")
            for page in paginator.paginate(
                Filters=[
                    # matches any ARN that ends with the profile name
                    {"Name": "iam-instance-profile.arn", "Values": ["*/%s" % profile_name]},
                    {"Name": "instance-state-name", "Values": LIVE_INSTANCE_STATES},
                ]
            ):
                for reservation in page.get("Reservations", []):
                    for instance in reservation.get("Instances", []):
                        instance_ids.add(instance["InstanceId"])
        except (ClientError, BotoCoreError) as e:
            raise QueryError(profile_name, e) from e

        log.info("Found %d instances using profile %s", len(instance_ids), profile_name)
        return instance_ids
