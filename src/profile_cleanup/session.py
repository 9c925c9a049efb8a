"""One profile removal run against a single host."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler

from .audit import AuditLog, format_profile, format_result
from .engine import ProfileRemovalEngine, build_keep_specification, classify
from .inventory.base import InventoryError
from .inventory.powershell import validate_host
from .models import KeepSpecification, ProfileRecord, RemovalAction, RemovalPlan, RemovalResult

if TYPE_CHECKING:
    from .config import CleanupConfig
    from .console import InputProvider, ReportSink
    from .inventory.base import InventorySource


def setup_logging(config: CleanupConfig) -> logging.Logger:
    """Set up the tool logger: Rich on the console, plain text in the log file.

    Returns:
        Configured logger instance.

    """
    logger = logging.getLogger("profile-cleanup")
    logger.setLevel(getattr(logging, config.log_level))

    # Clear existing handlers to avoid duplicates if called again
    if logger.handlers:
        logger.handlers.clear()

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_time=True,
        show_path=False,
    )
    console_handler.setLevel(logging.INFO)
    logger.addHandler(console_handler)

    config.log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
    logger.addHandler(file_handler)

    return logger


@dataclass
class SessionOutcome:
    """Everything a removal run saw and did."""

    host: str
    before: list[ProfileRecord]
    keep_spec: KeepSpecification
    plan: RemovalPlan
    removed: list[RemovalResult] = field(default_factory=list)
    skipped: list[RemovalResult] = field(default_factory=list)
    after: list[ProfileRecord] | None = None
    cancelled: bool = False
    audit_path: Path | None = None


class RemovalSession:
    """Drives fetch, classify, confirm, remove and report for one host."""

    def __init__(
        self,
        config: CleanupConfig,
        source: InventorySource,
        prompter: InputProvider,
        report: ReportSink,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.source = source
        self.prompter = prompter
        self.report = report
        self.logger = logger or logging.getLogger("profile-cleanup")

    def _resolve_host(self, host: str | None) -> str:
        while not host or not host.strip():
            host = self.prompter.ask_host()
        return validate_host(host)

    def list_inventory(self, host: str | None = None) -> list[ProfileRecord]:
        """Fetch and show the profiles on a host without changing anything."""
        host = self._resolve_host(host)
        profiles = self.source.list_profiles(host)
        self.report.show_profiles(f"Profiles on {host}", profiles)
        return profiles

    def run(
        self,
        host: str | None = None,
        keep_names: Sequence[str] | None = None,
        *,
        assume_yes: bool = False,
        dry_run: bool = False,
    ) -> SessionOutcome:
        """Run one removal pass.

        Args:
            host: Target computer. Prompted for when missing.
            keep_names: Names to keep. Prompted for when None.
            assume_yes: Skip the confirmation prompt.
            dry_run: Classify and report only.

        Returns:
            Outcome of the run.

        Raises:
            InventoryError: If the initial inventory cannot be fetched. Nothing
                has been deleted when this is raised.

        """
        host = self._resolve_host(host)

        with AuditLog(self.config.audit_log_dir, host, datetime.now()) as audit:
            audit.append_line(f"Profile removal session started for {host}")
            self.logger.info("Fetching profile inventory from %s", host)

            try:
                before = self.source.list_profiles(host)
            except InventoryError as e:
                audit.append_line(f"Inventory failed, nothing removed: {e}", "ERROR")
                self.logger.error("Inventory failed for %s: %s", host, e)
                self.report.error(f"Cannot enumerate profiles on {host}: {e}")
                raise

            audit.append_section("Profiles before removal", before, format_profile)
            self.report.show_profiles(f"Profiles on {host}", before)

            if keep_names is None:
                keep_names = self.prompter.ask_keep_names()
            keep_spec = build_keep_specification([*self.config.default_keep_names, *keep_names], before)
            audit.append_line(f"Keep list: {', '.join(sorted(keep_spec.names_to_keep)) or '(empty)'}")
            for name in keep_spec.unmatched_names:
                message = f"Keep-list entry '{name}' does not match any profile on {host}"
                audit.append_line(message, "WARNING")
                self.logger.warning("Unmatched keep-list entry on %s: %s", host, name)
                self.report.warn(message)

            plan = classify(before, keep_spec, self.config.system_sids)
            outcome = SessionOutcome(
                host=host,
                before=before,
                keep_spec=keep_spec,
                plan=plan,
                audit_path=audit.path,
            )
            self.report.show_profiles("Marked for removal", [entry.profile for entry in plan.to_remove])

            if not plan.has_removals:
                audit.append_line("Nothing to remove")
                self.report.info("No profiles eligible for removal")
                outcome.skipped = self._skipped_only(plan)
                outcome.after = before
                self._finish(audit, outcome)
                return outcome

            if dry_run:
                audit.append_line("Dry run, no profiles removed")
                self.report.info(f"Dry run: {len(plan.to_remove)} profile(s) would be removed")
                outcome.skipped = self._skipped_only(plan)
                outcome.after = before
                self._finish(audit, outcome)
                return outcome

            if self.config.confirm_before_delete and not assume_yes:
                if not self.prompter.confirm(f"Remove {len(plan.to_remove)} profile(s) from {host}?"):
                    audit.append_line("Cancelled by operator, no profiles removed", "WARNING")
                    self.report.warn("Cancelled, nothing was removed")
                    outcome.cancelled = True
                    return outcome

            engine = ProfileRemovalEngine(self.source, host, self.logger)
            audit.append_line(f"Removing {len(plan.to_remove)} profile(s)")
            outcome.removed, outcome.skipped = engine.execute(plan, lambda result: self._record(audit, result))

            try:
                outcome.after = self.source.list_profiles(host)
            except InventoryError as e:
                audit.append_line(f"Could not fetch inventory after removal: {e}", "ERROR")
                self.logger.error("Post-removal inventory failed for %s: %s", host, e)

            self._finish(audit, outcome)
            return outcome

    @staticmethod
    def _record(audit: AuditLog, result: RemovalResult) -> None:
        severity = "INFO" if result.action is RemovalAction.REMOVED else "ERROR"
        audit.append_line(f"Deletion result: {format_result(result)}", severity)

    @staticmethod
    def _skipped_only(plan: RemovalPlan) -> list[RemovalResult]:
        return [RemovalResult(entry.profile, RemovalAction.SKIPPED, entry.reason) for entry in plan.to_skip]

    def _finish(self, audit: AuditLog, outcome: SessionOutcome) -> None:
        """Write the removed, skipped and remaining breakdown to the log and console."""
        audit.append_section("Removed", outcome.removed, format_result)
        audit.append_section("Skipped", outcome.skipped, format_result)
        if outcome.after is not None:
            audit.append_section("Profiles after removal", outcome.after, format_profile)

        self.report.show_results("Removed", outcome.removed)
        self.report.show_results("Skipped", outcome.skipped)
        if outcome.after is not None:
            self.report.show_profiles(f"Remaining on {outcome.host}", outcome.after)
        else:
            self.report.warn("Remaining inventory unavailable")

        audit.append_line(f"Session finished: removed={len(outcome.removed)}, skipped={len(outcome.skipped)}")
        self.report.info(f"Audit log: {audit.path}")
