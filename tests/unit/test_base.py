"""Unit tests for the deployment data model."""
import pytest

from rdebug.deploy.base import (
    DeploymentGroup,
    DeploymentReport,
    DeploymentStatus,
    InstallItem,
    ItemKind,
    group_items,
    is_protected_path,
    normalize_remote_dir,
)
from rdebug.deploy.exceptions import SafetyViolation


def item(source, destination, kind=ItemKind.FILE):
    return InstallItem(kind=kind, source=source, destination=destination)


class TestProtectedPaths:

    @pytest.mark.parametrize("path", ["/", "/usr", "/usr/bin", "/etc/", "//usr//lib/", "/usr/./bin"])
    def test_protected(self, path):
        assert is_protected_path(path)

    @pytest.mark.parametrize("path", ["/opt/app", "/usr/lib/myapp", "/tmp", "/home/root"])
    def test_allowed(self, path):
        assert not is_protected_path(path)

    def test_normalize_collapses_slashes(self):
        assert normalize_remote_dir("//opt//app/") == "/opt/app"

    def test_check_destination_raises(self):
        bad = item("/b/app", "/usr/bin", ItemKind.EXECUTABLE)

        with pytest.raises(SafetyViolation) as exc_info:
            bad.check_destination()

        assert exc_info.value.destination == "/usr/bin"
        assert exc_info.value.item is bad


class TestGrouping:

    def test_shared_destination_makes_one_group(self):
        groups = group_items([
            item("/b/app", "/opt/app/bin", ItemKind.EXECUTABLE),
            item("/b/app.conf", "/opt/app/bin/"),
        ])

        assert len(groups) == 1
        assert groups[0].destination == "/opt/app/bin"
        assert len(groups[0]) == 2

    def test_distinct_destinations_keep_first_seen_order(self):
        groups = group_items([
            item("/b/z", "/opt/z"),
            item("/b/a", "/opt/a"),
            item("/b/z2", "/opt/z"),
        ])

        assert [g.destination for g in groups] == ["/opt/z", "/opt/a"]

    def test_items_sorted_into_buckets(self):
        group = DeploymentGroup(destination="/opt/app")
        group.add(item("/b/lib.so", "/opt/app", ItemKind.LIBRARY))
        group.add(item("/b/data", "/opt/app", ItemKind.DIRECTORY))
        group.add(item("/b/app", "/opt/app", ItemKind.EXECUTABLE))

        assert [i.name for i in group.files] == ["lib.so"]
        assert [i.name for i in group.directories] == ["data"]
        assert [i.name for i in group.batch_items] == ["lib.so", "app"]

    def test_add_rejects_foreign_destination(self):
        group = DeploymentGroup(destination="/opt/app")

        with pytest.raises(ValueError):
            group.add(item("/b/x", "/opt/other"))


class TestDeploymentReport:

    def test_empty_report_is_success(self):
        report = DeploymentReport()

        assert report.status == DeploymentStatus.SUCCESS
        assert report.exit_code() == 0

    def test_partial_when_some_groups_fail(self):
        report = DeploymentReport(
            groups_total=2,
            succeeded_groups=["/opt/a"],
            failed_groups={"/opt/b": "tar failed"},
        )

        assert report.status == DeploymentStatus.PARTIAL
        assert report.exit_code() == 2

    def test_failed_when_every_group_fails(self):
        report = DeploymentReport(groups_total=1, failed_groups={"/opt/b": "tar failed"})

        assert report.status == DeploymentStatus.FAILED
        assert report.exit_code() == 1

    def test_violation_alongside_success_is_partial(self):
        report = DeploymentReport(
            groups_total=1,
            succeeded_groups=["/opt/a"],
            violations=[SafetyViolation("/usr/bin")],
        )

        assert report.status == DeploymentStatus.PARTIAL

    def test_fatal_error_wins(self):
        report = DeploymentReport(succeeded_groups=["/opt/a"], error=RuntimeError("boom"))

        assert report.status == DeploymentStatus.FAILED
        assert not report.success
