#!/usr/bin/env python3
# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.
#
"""Karpenter Instance Profiles charm.

This charm is responsible for rotating the IAM instance profiles of a cluster's Karpenter
EC2NodeClasses when their role changes, and for deleting retired instance profiles once no
EC2 instance uses them anymore.
"""

import json
import logging
from typing import Dict

import boto3
import ops
from charmed_kubeflow_chisme.components.charm_reconciler import CharmReconciler
from charmed_kubeflow_chisme.components.leadership_gate_component import LeadershipGateComponent
from charmed_kubeflow_chisme.exceptions import ErrorWithStatus
from lightkube import Client
from lightkube.core.exceptions import ApiError

from components.nodeclasses_component import NodeClassesComponent
from instance_profiles.classes import ReconcileOptions
from instance_profiles.helpers.ec2 import Ec2InstanceInventory
from instance_profiles.helpers.iam import IamProfileStore
from instance_profiles.reconcile import ReconcileDriver, list_instance_profiles

logger = logging.getLogger(__name__)


class KarpenterInstanceProfilesCharm(ops.CharmBase):
    """A Juju charm for the Karpenter Instance Profiles operator."""

    def __init__(self, framework: ops.Framework):
        """Initialize charm and setup the reconciliation components."""
        super().__init__(framework)

        # Lightkube client needed for reading and patching the EC2NodeClasses
        self.client = Client(field_manager="instance-profiles-lightkube")

        try:
            self._validate_config()
        except ErrorWithStatus as e:
            self.unit.status = e.status
            return

        self.charm_reconciler = CharmReconciler(self)

        self.leadership_gate = self.charm_reconciler.add(
            component=LeadershipGateComponent(
                charm=self,
                name="leadership-gate",
            ),
            depends_on=[],
        )

        self.nodeclasses = self.charm_reconciler.add(
            component=NodeClassesComponent(
                charm=self,
                name="nodeclasses",
                client=self.client,
                driver_getter=self._get_driver,
            ),
            depends_on=[self.leadership_gate],
        )

        # The default handlers also reconcile on update-status, the periodic trigger
        self.charm_reconciler.install_default_event_handlers()

        # Handlers for all Juju actions
        self.framework.observe(self.on.reconcile_now_action, self._on_reconcile_now)
        self.framework.observe(
            self.on.list_instance_profiles_action, self._on_list_instance_profiles
        )

    def _on_reconcile_now(self, event: ops.ActionEvent):
        """Log the Juju action and reconcile all EC2NodeClasses."""
        logger.info("Juju action reconcile-now has been triggered.")
        if not self.unit.is_leader():
            event.fail("Only the leader unit can reconcile EC2NodeClasses.")
            return

        event.log("Running reconcile-now...")
        component = self.nodeclasses.component
        reconciled, failed = component.reconcile()
        if component.list_error is not None:
            event.fail(f"Couldn't list EC2NodeClasses: {component.list_error}")
            return

        event.set_results(
            {"reconciled": ", ".join(sorted(reconciled)), "failed": ", ".join(sorted(failed))}
        )
        if failed:
            event.fail("Failed to reconcile EC2NodeClasses: " + ", ".join(sorted(failed)))
            return
        event.log("EC2NodeClasses have been reconciled")

    def _on_list_instance_profiles(self, event: ops.ActionEvent):
        """List the current and previous instance profiles of all EC2NodeClasses."""
        logger.info("Juju action list-instance-profiles has been triggered.")
        event.log("Running list-instance-profiles...")
        try:
            profiles = list_instance_profiles(self.client)
        except ApiError as e:
            event.fail(f"Couldn't list EC2NodeClasses: {e}")
            return
        event.set_results({"instance-profiles": json.dumps(profiles)})

    def _get_driver(self) -> ReconcileDriver:
        """Return a ReconcileDriver talking to AWS with the configured region and credentials."""
        region = str(self.config["region"])
        session = boto3.session.Session(region_name=region, **self.aws_credentials)
        return ReconcileDriver(
            profile_store=IamProfileStore(session.client("iam")),
            inventory=Ec2InstanceInventory(session.client("ec2")),
            options=ReconcileOptions(cluster_name=str(self.config["cluster-name"]), region=region),
        )

    @property
    def aws_credentials(self) -> Dict[str, str]:
        """Retrieve the AWS credentials from the Juju secret in aws-credentials-secret-id.

        Returns:
            The keyword arguments for a boto3 Session, or an empty dict if the config
            hasn't been set or the secret can't be read. In that case boto3 falls back
            to its default credential chain.
        """
        secret_id = str(self.config.get("aws-credentials-secret-id", ""))
        if not secret_id:
            return {}

        try:
            secret = self.model.get_secret(id=secret_id)
            content = secret.get_content(refresh=True)
            return {
                "aws_access_key_id": content["access-key-id"],
                "aws_secret_access_key": content["secret-access-key"],
            }
        except (ops.SecretNotFoundError, ops.model.ModelError, KeyError):
            logger.warning("Could not read AWS credentials from secret %s.", secret_id)
            return {}

    def _validate_config(self):
        """Check that the config needed for naming profiles and talking to AWS is set.

        Raises:
            ErrorWithStatus: If the config `cluster-name` or `region` is empty.
        """
        for option in ("cluster-name", "region"):
            if self.config[option] == "":
                logger.warning("Charm is Blocked due to empty value of `%s`.", option)
                raise ErrorWithStatus(f"Config `{option}` cannot be empty.", ops.BlockedStatus)


if __name__ == "__main__":
    ops.main(KarpenterInstanceProfilesCharm)
