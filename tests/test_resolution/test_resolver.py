"""Tests for workload_attestor.resolution.resolver — pod matching.

Covers:
- find_by_discriminant: single match, no match, unknown pods skipped
- Ambiguity detection regardless of listing order
- The same pod listed twice is one candidate
- container_id_from_cgroup for cgroup v1 and systemd layouts
- ProcessMatcher attaches the matched container; missing cgroup matches nothing
- get_by_name: found, not found (retryable), name mismatch (fatal), no UID yet
"""
from __future__ import annotations

from pathlib import Path

import pytest
from conftest import CONTAINER_ID_DB, CONTAINER_ID_WEB, make_pod, write_cgroup

from workload_attestor.resolution.descriptor import PodRecord
from workload_attestor.resolution.directory import InMemoryPodDirectory
from workload_attestor.resolution.errors import (
    ClaimMismatchError,
    ErrorKind,
    WorkloadNotFoundError,
)
from workload_attestor.resolution.resolver import (
    ProcessMatcher,
    container_id_from_cgroup,
    find_by_discriminant,
    get_by_name,
    known_pod,
)


class _WrongPodDirectory(InMemoryPodDirectory):
    """Directory that answers every lookup with the same pod."""

    def __init__(self, pod: PodRecord) -> None:
        super().__init__([pod])
        self._pod = pod

    def get_pod(self, namespace: str, name: str) -> PodRecord:
        return self._pod


# ===========================================================================
# find_by_discriminant
# ===========================================================================


class TestFindByDiscriminant:
    def test_single_known_pod_matches(self) -> None:
        result = find_by_discriminant([make_pod()])
        assert result.found
        assert result.descriptor is not None
        assert result.descriptor.name == "web-7"
        assert not result.ambiguous

    def test_empty_listing_finds_nothing(self) -> None:
        result = find_by_discriminant([])
        assert not result.found
        assert not result.ambiguous

    def test_pod_without_uid_is_not_a_candidate(self) -> None:
        result = find_by_discriminant([make_pod(uid="")])
        assert not result.found

    def test_two_distinct_candidates_are_ambiguous(self) -> None:
        pods = [make_pod(name="a", uid="uid-a"), make_pod(name="b", uid="uid-b")]
        result = find_by_discriminant(pods)
        assert result.ambiguous
        assert result.descriptor is None
        assert result.candidates == ["prod/a", "prod/b"]

    def test_ambiguity_independent_of_order(self) -> None:
        pods = [make_pod(name="a", uid="uid-a"), make_pod(name="b", uid="uid-b")]
        assert find_by_discriminant(pods).ambiguous
        assert find_by_discriminant(list(reversed(pods))).ambiguous

    def test_same_uid_listed_twice_is_one_candidate(self) -> None:
        pod = make_pod()
        result = find_by_discriminant([pod, pod])
        assert result.found
        assert not result.ambiguous

    def test_custom_predicate_filters_candidates(self) -> None:
        pods = [make_pod(name="a", uid="uid-a"), make_pod(name="b", uid="uid-b")]

        def only_b(pod: PodRecord):  # type: ignore[no-untyped-def]
            return known_pod(pod) if pod.name == "b" else None

        result = find_by_discriminant(pods, only_b)
        assert result.descriptor is not None
        assert result.descriptor.name == "b"


# ===========================================================================
# cgroup parsing and ProcessMatcher
# ===========================================================================


class TestContainerIdFromCgroup:
    def test_cgroup_v1_layout(self) -> None:
        text = (
            "12:memory:/kubepods/besteffort/pod1234/" + CONTAINER_ID_WEB + "\n"
            "1:name=systemd:/kubepods/besteffort/pod1234/" + CONTAINER_ID_WEB + "\n"
        )
        assert container_id_from_cgroup(text) == CONTAINER_ID_WEB

    def test_systemd_scope_layout(self) -> None:
        text = f"0::/kubepods.slice/x.slice/cri-containerd-{CONTAINER_ID_DB}.scope\n"
        assert container_id_from_cgroup(text) == CONTAINER_ID_DB

    def test_host_process_has_no_container(self) -> None:
        assert container_id_from_cgroup("0::/user.slice/user-1000.slice/session-2.scope\n") is None


class TestProcessMatcher:
    def test_matches_pod_running_the_container(self, proc_root: Path) -> None:
        write_cgroup(proc_root, 4242, CONTAINER_ID_WEB)
        matcher = ProcessMatcher(4242, proc_root=proc_root)
        pods = [
            make_pod(name="web-7", uid="uid-web", container_id=CONTAINER_ID_WEB),
            make_pod(name="db-0", uid="uid-db", container_id=CONTAINER_ID_DB),
        ]
        result = find_by_discriminant(pods, matcher)
        assert result.descriptor is not None
        assert result.descriptor.name == "web-7"
        assert result.descriptor.container is not None
        assert result.descriptor.container.name == "main"

    def test_matches_init_container(self, proc_root: Path) -> None:
        write_cgroup(proc_root, 10, CONTAINER_ID_DB)
        pod = PodRecord.from_dict(
            {
                "metadata": {"namespace": "prod", "name": "job-1", "uid": "uid-job"},
                "status": {
                    "initContainerStatuses": [
                        {"name": "setup", "image": "setup:1", "containerID": f"cri-o://{CONTAINER_ID_DB}"}
                    ]
                },
            }
        )
        descriptor = ProcessMatcher(10, proc_root=proc_root)(pod)
        assert descriptor is not None
        assert descriptor.container is not None
        assert descriptor.container.name == "setup"

    def test_missing_cgroup_matches_nothing(self, proc_root: Path) -> None:
        matcher = ProcessMatcher(99999, proc_root=proc_root)
        assert matcher.container_id is None
        assert matcher(make_pod(container_id=CONTAINER_ID_WEB)) is None

    def test_unknown_pod_is_not_matched(self, proc_root: Path) -> None:
        write_cgroup(proc_root, 1, CONTAINER_ID_WEB)
        matcher = ProcessMatcher(1, proc_root=proc_root)
        assert matcher(make_pod(uid="", container_id=CONTAINER_ID_WEB)) is None

    def test_two_pods_with_same_container_id_are_ambiguous(self, proc_root: Path) -> None:
        write_cgroup(proc_root, 7, CONTAINER_ID_WEB)
        pods = [
            make_pod(name="a", uid="uid-a", container_id=CONTAINER_ID_WEB),
            make_pod(name="b", uid="uid-b", container_id=CONTAINER_ID_WEB),
        ]
        result = find_by_discriminant(pods, ProcessMatcher(7, proc_root=proc_root))
        assert result.ambiguous


# ===========================================================================
# get_by_name
# ===========================================================================


class TestGetByName:
    def test_returns_descriptor_for_existing_pod(self) -> None:
        directory = InMemoryPodDirectory([make_pod()])
        descriptor = get_by_name(directory, "prod", "web-7")
        assert descriptor.qualified_name == "prod/web-7"
        assert descriptor.service_account == "web-sa"

    def test_missing_pod_is_retryable(self) -> None:
        with pytest.raises(WorkloadNotFoundError) as exc_info:
            get_by_name(InMemoryPodDirectory(), "prod", "web-7")
        assert exc_info.value.retryable
        assert exc_info.value.kind == ErrorKind.NOT_FOUND_TRANSIENT

    def test_pod_without_uid_is_retryable(self) -> None:
        directory = InMemoryPodDirectory([make_pod(uid="")])
        with pytest.raises(WorkloadNotFoundError):
            get_by_name(directory, "prod", "web-7")

    def test_name_mismatch_is_fatal(self) -> None:
        directory = _WrongPodDirectory(make_pod(name="other", namespace="dev"))
        with pytest.raises(ClaimMismatchError) as exc_info:
            get_by_name(directory, "prod", "web-7")
        assert not exc_info.value.retryable
        assert exc_info.value.found == "dev/other"
