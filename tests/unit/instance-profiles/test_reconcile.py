from unittest.mock import MagicMock, patch

import pytest
from lightkube.models.meta_v1 import ObjectMeta

from instance_profiles.classes import (
    CONDITION_INSTANCE_PROFILE_READY,
    InstanceProfilesStatus,
    NodeClass,
    NodeClassSpec,
    NodeClassStatus,
)
from instance_profiles.helpers.nodeclasses import EC2NodeClassLightkube
from instance_profiles.interfaces import QueryError
from instance_profiles.naming import instance_profile_name
from instance_profiles.reconcile import list_instance_profiles, reconcile_all_nodeclasses


def profile_name(options, version):
    return instance_profile_name(options.cluster_name, options.region, "default", version)


def test_external_instance_profile(driver, profile_store, inventory):
    """Test that a NodeClass with an instanceProfile is ready without any calls."""
    nodeclass = NodeClass(name="default", spec=NodeClassSpec(instance_profile="P-ext"))

    status = driver.run(nodeclass)

    assert status.instance_profile == "P-ext"
    assert status.instance_profiles is None
    assert status.is_ready()
    assert profile_store.calls == []
    assert inventory.queries == []


def test_first_run_creates_profile(driver, options):
    """Test that the first run initialises the state and creates a profile."""
    nodeclass = NodeClass(name="default", generation=3, spec=NodeClassSpec(role="role-A"))

    status = driver.run(nodeclass)

    p1 = profile_name(options, 1)
    assert status.instance_profiles == InstanceProfilesStatus(current=p1, previous=[], version=1)
    assert status.instance_profile == p1
    assert status.is_ready()
    assert status.get_condition(CONDITION_INSTANCE_PROFILE_READY).observed_generation == 3
    # the NodeClass itself is not mutated
    assert nodeclass.status == NodeClassStatus()


def test_rotation_keeps_profile_in_use(driver, inventory, options):
    """Test that the retired profile stays in previous while instances use it."""
    p1 = profile_name(options, 1)
    nodeclass = NodeClass(
        name="default",
        spec=NodeClassSpec(role="role-B"),
        status=NodeClassStatus(
            instance_profile=p1,
            instance_profiles=InstanceProfilesStatus(current=p1, version=1),
        ),
    )
    inventory.instances[p1] = {"i-1"}

    status = driver.run(nodeclass)

    p2 = profile_name(options, 2)
    assert status.instance_profiles == InstanceProfilesStatus(current=p2, previous=[p1], version=2)
    assert status.instance_profile == p2


def test_rotation_deletes_unused_profile(driver, profile_store, options):
    """Test that garbage collection runs right after a rotation."""
    driver.run(NodeClass(name="default", spec=NodeClassSpec(role="role-A")))
    p1 = profile_name(options, 1)
    nodeclass = NodeClass(
        name="default",
        spec=NodeClassSpec(role="role-B"),
        status=NodeClassStatus(instance_profiles=InstanceProfilesStatus(current=p1, version=1)),
    )

    status = driver.run(nodeclass)

    assert status.instance_profiles.previous == []
    assert profile_store.calls_of("delete") == [p1]
    assert list(profile_store.profiles) == [profile_name(options, 2)]


def test_run_is_idempotent(driver, profile_store):
    """Test that running twice with the same role doesn't rotate again."""
    nodeclass = NodeClass(name="default", spec=NodeClassSpec(role="role-A"))
    nodeclass.status = driver.run(nodeclass)

    status = driver.run(nodeclass)

    assert len(profile_store.calls_of("create")) == 1
    assert status.instance_profiles.version == 1


def test_garbage_collection_runs_without_rotation(driver, profile_store, inventory):
    """Test that retired profiles are collected even if the role didn't change."""
    profile_store.profiles["current"] = "role-A"
    nodeclass = NodeClass(
        name="default",
        spec=NodeClassSpec(role="role-A"),
        status=NodeClassStatus(
            instance_profiles=InstanceProfilesStatus(
                current="current", previous=["old"], version=2
            )
        ),
    )

    status = driver.run(nodeclass)

    assert status.instance_profiles.previous == []
    assert status.instance_profiles.version == 2
    assert inventory.queries == ["old"]


def test_failure_raises_and_leaves_nodeclass_untouched(driver, inventory):
    """Test that a failing garbage collection raises and the input NodeClass isn't changed."""
    inventory.fail_on.add("old")
    original = NodeClassStatus(
        instance_profiles=InstanceProfilesStatus(current="current", previous=["old"], version=2)
    )
    nodeclass = NodeClass(
        name="default", spec=NodeClassSpec(role="role-A"), status=original.model_copy(deep=True)
    )

    with pytest.raises(QueryError):
        driver.run(nodeclass)

    assert nodeclass.status == original
    assert not nodeclass.status.is_ready()


def lightkube_nodeclass(name, spec, status=None):
    return EC2NodeClassLightkube(
        metadata=ObjectMeta(name=name, generation=1), spec=spec, status=status or {}
    )


@patch("instance_profiles.reconcile.patch_nodeclass_status")
@patch("instance_profiles.reconcile.list_nodeclasses")
def test_reconcile_all_nodeclasses(mock_list, mock_patch, driver, inventory):
    """Test that failing NodeClasses are reported and only the successful ones are patched."""
    inventory.fail_on.add("old")
    mock_list.return_value = [
        lightkube_nodeclass("external", {"instanceProfile": "P-ext"}),
        lightkube_nodeclass("invalid", {}),
        lightkube_nodeclass(
            "failing",
            {"role": "role-A"},
            {"instanceProfiles": {"current": "", "previous": ["old"], "version": 1}},
        ),
    ]
    client = MagicMock()

    reconciled, failed = reconcile_all_nodeclasses(client, driver)

    assert reconciled == ["external"]
    assert sorted(failed) == ["failing", "invalid"]
    assert isinstance(failed["failing"], QueryError)
    mock_patch.assert_called_once()
    _, name, status = mock_patch.call_args.args
    assert name == "external"
    assert status.instance_profile == "P-ext"


@patch("instance_profiles.reconcile.list_nodeclasses")
def test_list_instance_profiles(mock_list):
    mock_list.return_value = [
        lightkube_nodeclass("external", {"instanceProfile": "P-ext"}),
        lightkube_nodeclass(
            "managed",
            {"role": "role-A"},
            {"instanceProfiles": {"current": "p2", "previous": ["p1"], "version": 2}},
        ),
    ]

    profiles = list_instance_profiles(MagicMock())

    assert profiles == {"managed": {"current": "p2", "previous": ["p1"], "version": 2}}


@patch("instance_profiles.reconcile.patch_nodeclass_status")
@patch("instance_profiles.reconcile.list_nodeclasses")
def test_rotation_not_persisted_while_collection_fails(
    mock_list, mock_patch, driver, profile_store, options
):
    """Test that a rotation is retried under the same name until garbage collection succeeds."""
    p1, p2 = profile_name(options, 1), profile_name(options, 2)
    profile_store.profiles.update({p1: "role-A", "old": "role-A"})
    profile_store.fail_delete.add("old")
    mock_list.return_value = [
        lightkube_nodeclass(
            "default",
            {"role": "role-B"},
            {"instanceProfiles": {"current": p1, "previous": ["old"], "version": 1}},
        )
    ]

    for _ in range(3):
        reconciled, failed = reconcile_all_nodeclasses(MagicMock(), driver)
        assert reconciled == []
        assert list(failed) == ["default"]
    mock_patch.assert_not_called()
    assert profile_store.calls_of("create") == [p2, p2, p2]

    profile_store.fail_delete.clear()
    reconciled, failed = reconcile_all_nodeclasses(MagicMock(), driver)

    assert reconciled == ["default"]
    assert failed == {}
    _, _, status = mock_patch.call_args.args
    assert status.instance_profiles == InstanceProfilesStatus(current=p2, previous=[], version=2)


def test_current_is_never_retired_across_cycles(driver, inventory):
    """Test that the current profile never lands in previous over rotations and collections."""
    nodeclass = NodeClass(name="default", spec=NodeClassSpec(role="role-A"))
    # (role, whether instances keep running on the current profile after the cycle)
    cycles = [
        ("role-A", True),
        ("role-B", True),
        ("role-B", False),
        ("role-A", True),
        ("role-C", True),
        ("role-C", False),
        ("role-A", False),
        ("role-A", True),
        ("role-B", False),
    ]
    last_role = None

    for role, keep_instances in cycles:
        before = nodeclass.status.instance_profiles or InstanceProfilesStatus()
        nodeclass.spec = NodeClassSpec(role=role)

        nodeclass.status = driver.run(nodeclass)

        state = nodeclass.status.instance_profiles
        assert state.current not in state.previous
        assert nodeclass.status.instance_profile == state.current
        assert state.version == before.version + int(role != last_role)
        assert len(state.previous) <= len(before.previous) + 1
        last_role = role

        if keep_instances:
            inventory.instances[state.current] = {"i-%d" % state.version}
        else:
            inventory.instances.clear()
