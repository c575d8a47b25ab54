"""Fixtures with in-memory collaborators for the reconciler unit tests."""

from typing import Dict, List, Optional, Set, Tuple

import pytest

from instance_profiles.classes import ReconcileOptions
from instance_profiles.interfaces import ProfileNotFoundError, ProviderError, QueryError
from instance_profiles.reconcile import ReconcileDriver

CLUSTER_NAME = "test-cluster"
REGION = "us-west-2"


class FakeProfileStore:
    """ProfileStore keeping the profiles and their roles in a dict."""

    def __init__(self):
        self.profiles: Dict[str, Optional[str]] = {}
        self.tags: Dict[str, Dict[str, str]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail_get = False
        self.fail_create = False
        self.fail_delete: Set[str] = set()

    def get(self, name: str) -> Optional[str]:
        self.calls.append(("get", name))
        if self.fail_get:
            raise ProviderError("getting", name)
        if name not in self.profiles:
            raise ProfileNotFoundError(name)
        return self.profiles[name]

    def create(self, name: str, role: str, tags: Dict[str, str]) -> None:
        self.calls.append(("create", name))
        if self.fail_create:
            raise ProviderError("creating", name)
        self.profiles[name] = role
        self.tags[name] = tags

    def delete(self, name: str) -> None:
        self.calls.append(("delete", name))
        if name in self.fail_delete:
            raise ProviderError("deleting", name)
        self.profiles.pop(name, None)

    def calls_of(self, operation: str) -> List[str]:
        return [name for op, name in self.calls if op == operation]


class FakeInventory:
    """InstanceInventory keeping the instances of each profile in a dict."""

    def __init__(self):
        self.instances: Dict[str, Set[str]] = {}
        self.fail_on: Set[str] = set()
        self.queries: List[str] = []

    def query(self, profile_name: str) -> Set[str]:
        self.queries.append(profile_name)
        if profile_name in self.fail_on:
            raise QueryError(profile_name)
        return set(self.instances.get(profile_name, set()))


@pytest.fixture()
def profile_store() -> FakeProfileStore:
    return FakeProfileStore()


@pytest.fixture()
def inventory() -> FakeInventory:
    return FakeInventory()


@pytest.fixture()
def options() -> ReconcileOptions:
    return ReconcileOptions(cluster_name=CLUSTER_NAME, region=REGION)


@pytest.fixture()
def driver(profile_store, inventory, options) -> ReconcileDriver:
    return ReconcileDriver(profile_store, inventory, options)
