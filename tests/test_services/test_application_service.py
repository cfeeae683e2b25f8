"""Tests for workload grouping and snapshot construction."""

from __future__ import annotations

import pytest

from k8gate.services.application_service import (
    Application,
    Container,
    Snapshot,
    build_snapshot,
    collect_logins,
    discover_applications,
    repository_id,
)
from k8gate.upstream.workloads import WorkloadUnit
from tests.conftest import collaborator, make_unit


class TestRepositoryId:
    def test_dotted_labels(self) -> None:
        assert repository_id({"git.owner": "acme", "git.name": "blog"}) == "acme/blog"

    def test_underscore_labels(self) -> None:
        assert repository_id({"git_owner": "acme", "git_name": "shop"}) == "acme/shop"

    def test_dotted_label_wins_over_underscore(self) -> None:
        labels = {"git.owner": "acme", "git_owner": "other", "git.name": "blog"}
        assert repository_id(labels) == "acme/blog"

    @pytest.mark.parametrize(
        "labels",
        [{}, {"git.owner": "acme"}, {"git.name": "blog"}, {"git.owner": "", "git.name": "x"}],
    )
    def test_incomplete_labels(self, labels: dict[str, str]) -> None:
        assert repository_id(labels) == ""


class TestDiscoverApplications:
    def test_groups_pods_by_ssh_user(self) -> None:
        units = [
            make_unit("blog-1", "blog"),
            make_unit("blog-2", "blog"),
            make_unit("shop-1", "shop", repo="shop"),
        ]
        apps = discover_applications(units)

        assert list(apps) == ["blog", "shop"]
        assert apps["blog"].repository == "acme/blog"
        assert apps["blog"].containers == (
            Container("blog-1", "app"),
            Container("blog-2", "app"),
        )
        assert apps["shop"].repository == "acme/shop"

    def test_requires_name_and_ssh_user_labels(self) -> None:
        units = [
            WorkloadUnit(name="a", namespace="default", labels={"name": "a"}),
            WorkloadUnit(
                name="b", namespace="default", labels={"ci.rabbit.ssh.user": "b"}
            ),
            make_unit("c", "c"),
        ]
        assert list(discover_applications(units)) == ["c"]

    def test_first_unit_fixes_namespace_and_repository(self) -> None:
        units = [
            make_unit("blog-1", "blog", namespace="one"),
            make_unit("blog-2", "blog", namespace="two", repo="other"),
        ]
        app = discover_applications(units)["blog"]
        assert app.namespace == "one"
        assert app.repository == "acme/blog"

    def test_missing_git_labels_keep_application(self) -> None:
        app = discover_applications([make_unit("api-1", "api", owner="", repo="")])["api"]
        assert app.repository == ""
        assert app.containers == (Container("api-1", "app"),)

    def test_unsafe_ssh_user_is_ignored(self) -> None:
        units = [make_unit("evil-1", "../etc"), make_unit("ok-1", "ok")]
        assert list(discover_applications(units)) == ["ok"]

    def test_pod_without_containers_has_empty_container_name(self) -> None:
        app = discover_applications([make_unit("job-1", "job", container="")])["job"]
        assert app.containers == (Container("job-1", ""),)

    def test_empty_input(self) -> None:
        assert discover_applications([]) == {}


class TestSnapshot:
    def _app(self) -> Application:
        return Application(
            ssh_user="blog",
            repository="acme/blog",
            namespace="default",
            containers=(Container("blog-1", "app"),),
            users={"alice": collaborator("alice", "admin"), "bob": collaborator("bob")},
        )

    def test_collect_logins_unique_in_order(self) -> None:
        other = Application(
            ssh_user="shop",
            repository="acme/shop",
            namespace="default",
            users={"carol": collaborator("carol"), "alice": collaborator("alice")},
        )
        assert collect_logins([self._app(), other]) == ["alice", "bob", "carol"]

    def test_build_snapshot_indexes_users(self) -> None:
        app = self._app()
        snapshot = build_snapshot({"blog": app})
        assert snapshot.applications == {"blog": app}
        assert snapshot.users == {"alice": ["acme/blog"], "bob": ["acme/blog"]}

    def test_dict_round_trip_keeps_user_order(self) -> None:
        snapshot = build_snapshot({"blog": self._app()})
        restored = Snapshot.from_dict(snapshot.to_dict())
        assert restored == snapshot
        assert list(restored.applications["blog"].users) == ["alice", "bob"]

    def test_degraded_flag_is_not_persisted(self) -> None:
        snapshot = build_snapshot({"blog": self._app()}, degraded=True)
        assert snapshot.degraded
        assert "degraded" not in snapshot.to_dict()
        restored = Snapshot.from_dict(snapshot.to_dict())
        assert not restored.degraded
        assert restored == snapshot

    def test_application_dict_uses_repository_as_id(self) -> None:
        data = self._app().to_dict()
        assert data["id"] == "acme/blog"
        assert data["containers"] == [{"pod_name": "blog-1", "container_name": "app"}]
