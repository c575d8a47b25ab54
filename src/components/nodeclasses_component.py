# Copyright 2024 Canonical Ltd.

"""Chisme component that reconciles the instance profiles of the EC2NodeClasses."""

import logging
from typing import Callable, Dict, List, Tuple

from charmed_kubeflow_chisme.components.component import Component
from lightkube import Client
from lightkube.core.exceptions import ApiError
from ops import ActiveStatus, BlockedStatus, StatusBase

from instance_profiles.reconcile import ReconcileDriver, reconcile_all_nodeclasses

logger = logging.getLogger(__name__)


class NodeClassesComponent(Component):
    """Logical component that reconciles the instance profiles of all EC2NodeClasses."""

    def __init__(
        self,
        charm,
        name: str,
        client: Client,
        driver_getter: Callable[[], ReconcileDriver],
        *args,
        **kwargs,
    ):
        super().__init__(charm, name, *args, **kwargs)
        self.client = client
        self._driver_getter = driver_getter
        self.reconciled: List[str] = []
        self.failed: Dict[str, Exception] = {}
        self.list_error: ApiError | None = None

    def reconcile(self) -> Tuple[List[str], Dict[str, Exception]]:
        """Run a reconciliation pass over all EC2NodeClasses.

        Returns:
            The names of the EC2NodeClasses that were reconciled, and the errors of the
            EC2NodeClasses that failed, with their names as keys.
        """
        self.list_error = None
        try:
            self.reconciled, self.failed = reconcile_all_nodeclasses(
                self.client, self._driver_getter()
            )
        except ApiError as e:
            logger.error("Couldn't list EC2NodeClasses: %s", e)
            self.list_error = e
            self.reconciled, self.failed = [], {}
        return self.reconciled, self.failed

    def _configure_app_leader(self, event):
        """Reconcile the EC2NodeClasses. Only executed by the leader."""
        self.reconcile()

    def get_status(self) -> StatusBase:
        """Return the status of the last reconciliation pass."""
        if self.list_error is not None:
            return BlockedStatus(f"Couldn't list EC2NodeClasses: {self.list_error}")

        if self.failed:
            return BlockedStatus(
                "Failed to reconcile EC2NodeClasses, their rotations are not persisted "
                "until a pass succeeds: "
                + ", ".join(sorted(self.failed))
            )
        return ActiveStatus()
