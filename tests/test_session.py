"""Tests for a full removal session against fake collaborators."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

import pytest

from profile_cleanup.config import CleanupConfig
from profile_cleanup.inventory.base import InvalidHostError, InventoryError, ProfileDeletionError
from profile_cleanup.models import ProfileRecord, ReasonKind, RemovalResult
from profile_cleanup.session import RemovalSession

USER_SID_1 = "S-1-5-21-1-2-3-1001"
USER_SID_2 = "S-1-5-21-1-2-3-1002"
USER_SID_3 = "S-1-5-21-1-2-3-1003"


def _make_profile(name: str, sid: str, *, loaded: bool = False) -> ProfileRecord:
    return ProfileRecord(name=name, security_id=sid, storage_path=f"C:\\Users\\{name}", is_loaded=loaded)


class FakeSource:
    """In-memory host whose inventory shrinks as profiles are deleted."""

    def __init__(self, profiles: list[ProfileRecord], failing: set[str] | None = None) -> None:
        self.profiles = list(profiles)
        self.failing = failing or set()
        self.deleted: list[str] = []
        self.list_calls = 0
        self.fail_listing_after: int | None = None

    def list_profiles(self, host: str) -> list[ProfileRecord]:
        self.list_calls += 1
        if self.fail_listing_after is not None and self.list_calls > self.fail_listing_after:
            raise InventoryError(f"Cannot reach {host}")
        return list(self.profiles)

    def delete_profile(self, host: str, security_id: str) -> None:
        if security_id in self.failing:
            raise ProfileDeletionError("Access is denied")
        self.deleted.append(security_id)
        self.profiles = [p for p in self.profiles if p.security_id != security_id]


class FakePrompter:
    """Scripted operator answers."""

    def __init__(self, hosts: Sequence[str] = ("pc01",), keep: Sequence[str] = (), confirm: bool = True) -> None:
        self.hosts = list(hosts)
        self.keep = list(keep)
        self.answer = confirm
        self.host_prompts = 0
        self.keep_prompts = 0
        self.confirmations: list[str] = []

    def ask_host(self) -> str:
        self.host_prompts += 1
        return self.hosts.pop(0)

    def ask_keep_names(self) -> list[str]:
        self.keep_prompts += 1
        return self.keep

    def confirm(self, message: str) -> bool:
        self.confirmations.append(message)
        return self.answer


class FakeReport:
    """Collects everything that would be shown to the operator."""

    def __init__(self) -> None:
        self.profiles: dict[str, list[ProfileRecord]] = {}
        self.results: dict[str, list[RemovalResult]] = {}
        self.messages: list[tuple[str, str]] = []

    def show_profiles(self, title: str, profiles: Sequence[ProfileRecord]) -> None:
        self.profiles[title] = list(profiles)

    def show_results(self, title: str, results: Sequence[RemovalResult]) -> None:
        self.results[title] = list(results)

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def warn(self, message: str) -> None:
        self.messages.append(("warn", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))


@pytest.fixture
def config(tmp_path: Path) -> CleanupConfig:
    """Create a test configuration with a temp audit directory."""
    cfg = CleanupConfig()
    cfg.audit_log_dir = tmp_path / "audit"
    cfg.log_file = tmp_path / "test.log"
    return cfg


@pytest.fixture
def inventory() -> list[ProfileRecord]:
    """A typical workstation inventory."""
    return [
        _make_profile("systemprofile", "S-1-5-18"),
        _make_profile("jdoe", USER_SID_1),
        _make_profile("tech", USER_SID_2, loaded=True),
        _make_profile("olduser", USER_SID_3),
    ]


def _session(
    config: CleanupConfig,
    source: FakeSource,
    prompter: FakePrompter | None = None,
    report: FakeReport | None = None,
) -> RemovalSession:
    return RemovalSession(
        config,
        source,
        prompter or FakePrompter(),
        report or FakeReport(),
        logging.getLogger("test-session"),
    )


class TestRun:
    """Tests for RemovalSession.run."""

    def test_removes_unprotected_profiles(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test a normal run with a keep list."""
        source = FakeSource(inventory)
        report = FakeReport()
        prompter = FakePrompter()

        outcome = _session(config, source, prompter, report).run("pc01", ["jdoe"])

        assert source.deleted == [USER_SID_3]
        assert [r.profile.name for r in outcome.removed] == ["olduser"]
        reasons = {r.profile.name: r.reason.kind for r in outcome.skipped}
        assert reasons == {
            "systemprofile": ReasonKind.SYSTEM_ACCOUNT,
            "jdoe": ReasonKind.KEEP_LIST_BY_SID,
            "tech": ReasonKind.CURRENTLY_LOADED,
        }
        assert outcome.after is not None
        assert [p.name for p in outcome.after] == ["systemprofile", "jdoe", "tech"]
        assert len(prompter.confirmations) == 1
        assert prompter.keep_prompts == 0

    def test_tri_partite_report(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that removed, skipped and remaining are all reported."""
        report = FakeReport()

        _session(config, FakeSource(inventory), report=report).run("pc01", [])

        assert set(report.results) == {"Removed", "Skipped"}
        assert "Remaining on pc01" in report.profiles

    def test_audit_log_written(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that before, removed, skipped and after sections are logged."""
        outcome = _session(config, FakeSource(inventory)).run("pc01", ["ghost"])

        assert outcome.audit_path is not None
        text = outcome.audit_path.read_text(encoding="utf-8")
        assert "Profiles before removal (4)" in text
        assert "Removed (2)" in text
        assert "Skipped (2)" in text
        assert "Profiles after removal (2)" in text
        assert "Keep-list entry 'ghost' does not match" in text

    def test_unmatched_keep_names_warned(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that unmatched keep entries are warnings, not errors."""
        report = FakeReport()

        outcome = _session(config, FakeSource(inventory), report=report).run("pc01", ["ghost"])

        assert outcome.keep_spec.unmatched_names == ("ghost",)
        assert any(level == "warn" and "ghost" in message for level, message in report.messages)
        assert len(outcome.removed) == 2

    def test_inventory_failure_is_fatal(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that a failed initial inventory aborts before any deletion."""
        source = FakeSource(inventory)
        source.fail_listing_after = 0
        report = FakeReport()

        with pytest.raises(InventoryError):
            _session(config, source, report=report).run("pc01", [])

        assert source.deleted == []
        assert report.messages[-1][0] == "error"

    def test_after_snapshot_failure_keeps_results(
        self, config: CleanupConfig, inventory: list[ProfileRecord]
    ) -> None:
        """Test that results survive a failed post-removal inventory."""
        source = FakeSource(inventory)
        source.fail_listing_after = 1
        report = FakeReport()

        outcome = _session(config, source, report=report).run("pc01", [])

        assert outcome.after is None
        assert len(outcome.removed) == 2
        assert "Removed" in report.results
        assert any("unavailable" in message for _, message in report.messages)

    def test_partial_failure(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that one failed deletion does not stop the other."""
        source = FakeSource(inventory, failing={USER_SID_1})

        outcome = _session(config, source).run("pc01", [])

        assert source.deleted == [USER_SID_3]
        failed = [r for r in outcome.skipped if r.reason.kind is ReasonKind.REMOVAL_FAILED]
        assert [r.profile.name for r in failed] == ["jdoe"]

    def test_cancelled_confirmation(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that declining the confirmation removes nothing."""
        source = FakeSource(inventory)

        outcome = _session(config, source, FakePrompter(confirm=False)).run("pc01", [])

        assert outcome.cancelled
        assert source.deleted == []
        assert outcome.removed == []

    def test_assume_yes_skips_prompt(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that assume_yes removes without asking."""
        prompter = FakePrompter(confirm=False)
        source = FakeSource(inventory)

        _session(config, source, prompter).run("pc01", [], assume_yes=True)

        assert prompter.confirmations == []
        assert len(source.deleted) == 2

    def test_confirmation_disabled_in_config(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that confirm_before_delete=False removes without asking."""
        config.confirm_before_delete = False
        prompter = FakePrompter(confirm=False)

        _session(config, FakeSource(inventory), prompter).run("pc01", [])

        assert prompter.confirmations == []

    def test_dry_run(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that a dry run classifies but deletes nothing."""
        source = FakeSource(inventory)
        prompter = FakePrompter()

        outcome = _session(config, source, prompter).run("pc01", [], dry_run=True)

        assert source.deleted == []
        assert prompter.confirmations == []
        assert len(outcome.plan.to_remove) == 2
        assert outcome.removed == []

    def test_nothing_to_remove(self, config: CleanupConfig) -> None:
        """Test that a host with only protected profiles needs no confirmation."""
        source = FakeSource([_make_profile("systemprofile", "S-1-5-18")])
        prompter = FakePrompter()

        outcome = _session(config, source, prompter).run("pc01", [])

        assert prompter.confirmations == []
        assert outcome.removed == []
        assert [r.reason.kind for r in outcome.skipped] == [ReasonKind.SYSTEM_ACCOUNT]

    def test_prompts_for_missing_input(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that host and keep list are asked for when not given."""
        prompter = FakePrompter(hosts=["", "  ", "pc01"], keep=["jdoe"])
        source = FakeSource(inventory)

        outcome = _session(config, source, prompter).run()

        assert outcome.host == "pc01"
        assert prompter.host_prompts == 3
        assert prompter.keep_prompts == 1
        assert USER_SID_1 not in source.deleted

    def test_default_keep_names_merged(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that configured keep names are always honoured."""
        config.default_keep_names = ["OldUser"]
        source = FakeSource(inventory)

        _session(config, source).run("pc01", ["jdoe"])

        assert source.deleted == []

    def test_invalid_host_rejected(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that an unsafe host name never reaches the source."""
        source = FakeSource(inventory)

        with pytest.raises(InvalidHostError):
            _session(config, source).run("pc01'; whoami", [])

        assert source.list_calls == 0

    def test_rerun_is_idempotent(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that a second run against a pruned host removes nothing."""
        source = FakeSource(inventory)
        session = _session(config, source)

        session.run("pc01", [])
        second = session.run("pc01", [])

        assert second.removed == []
        assert len(source.deleted) == 2


class TestListInventory:
    """Tests for the read-only listing."""

    def test_lists_without_deleting(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that listing shows profiles and changes nothing."""
        source = FakeSource(inventory)
        report = FakeReport()

        profiles = _session(config, source, report=report).list_inventory("pc01")

        assert profiles == inventory
        assert report.profiles["Profiles on pc01"] == inventory
        assert source.deleted == []


class TestConfiguredKeepList:
    """Tests for keep names coming from a config file."""

    def test_scalar_default_keep_name_protects_profile(self, tmp_path: Path) -> None:
        """Test that a single configured name keeps that profile."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text(f"default_keep_names: admin\naudit_log_dir: {tmp_path / 'audit'}\n")
        config = CleanupConfig.load(config_path)
        source = FakeSource([_make_profile("admin", "S-1-5-21-1-2-3-500")])

        outcome = _session(config, source).run("pc01", [], assume_yes=True)

        assert source.deleted == []
        assert outcome.skipped[0].reason.kind is ReasonKind.KEEP_LIST_BY_SID


class TestAuditDuringRemoval:
    """Tests for the audit trail of an interrupted run."""

    def test_deletions_logged_before_interrupt(
        self, config: CleanupConfig, inventory: list[ProfileRecord]
    ) -> None:
        """Test that completed deletions are in the audit file when the run stops."""

        class InterruptingSource(FakeSource):
            def delete_profile(self, host: str, security_id: str) -> None:
                if self.deleted:
                    raise KeyboardInterrupt
                super().delete_profile(host, security_id)

        source = InterruptingSource(inventory)

        with pytest.raises(KeyboardInterrupt):
            _session(config, source).run("pc01", [], assume_yes=True)

        (audit_file,) = config.audit_log_dir.glob("*.log")
        text = audit_file.read_text(encoding="utf-8")
        assert source.deleted == [USER_SID_1]
        assert f"Deletion result: jdoe | {USER_SID_1} | removed" in text

    def test_failed_deletion_logged_as_error(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that a failed deletion is written at error severity."""
        outcome = _session(config, FakeSource(inventory, failing={USER_SID_1})).run("pc01", [])

        assert outcome.audit_path is not None
        text = outcome.audit_path.read_text(encoding="utf-8")
        assert f"| ERROR | Deletion result: jdoe | {USER_SID_1} | skipped | Removal failed" in text

    def test_rerun_gets_new_audit_file(self, config: CleanupConfig, inventory: list[ProfileRecord]) -> None:
        """Test that back-to-back runs never share an audit file."""
        session = _session(config, FakeSource(inventory))

        first = session.run("pc01", [])
        second = session.run("pc01", [])

        assert first.audit_path != second.audit_path
        assert len(list(config.audit_log_dir.glob("*.log"))) == 2
