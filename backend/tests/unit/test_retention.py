"""Unit tests for retention schemas and configuration.

Tests policy parsing, legal hold detection, configuration defaults and
run summary totals.
"""

import pytest
from pydantic import ValidationError

from config import (
    MAX_VERIFICATION_SAMPLE_SIZE,
    ReportingConfig,
    RetentionJobConfig,
    Settings,
    VerificationConfig,
)
from retention.schemas import (
    STATUS_EXECUTED,
    STATUS_FAILED,
    STATUS_SKIPPED_LEGAL_HOLD,
    VERIFICATION_CLEARED,
    VERIFICATION_RESIDUAL,
    ResumeApprovalGate,
    RetentionExecutionResult,
    RetentionPolicy,
    RetentionRunSummary,
    VerificationResult,
)


class TestRetentionPolicy:
    """Test RetentionPolicy parsing."""

    def test_accepts_camel_case_keys(self):
        """Test that policies from the configuration store may use camelCase."""
        policy = RetentionPolicy.model_validate({
            "id": 7,
            "entityName": "user_sessions",
            "action": "hard-delete",
            "retentionPeriodDays": 30,
        })

        assert policy.entity_name == "user_sessions"
        assert policy.retention_period_days == 30
        assert policy.active is True
        assert policy.criteria == {}

    def test_criteria_json_string_is_parsed(self):
        """Test that criteria stored as a JSON string become a dict."""
        policy = RetentionPolicy(
            id=1,
            entity_name="communities",
            action="soft-delete",
            retention_period_days=90,
            criteria='{"visibility": "private"}',
        )

        assert policy.criteria == {"visibility": "private"}

    def test_malformed_criteria_fall_back_to_empty(self):
        """Test that unparseable criteria never fail policy loading."""
        policy = RetentionPolicy(
            id=1,
            entity_name="communities",
            action="soft-delete",
            retention_period_days=90,
            criteria="{not json",
        )

        assert policy.criteria == {}

    def test_negative_retention_rejected(self):
        with pytest.raises(ValidationError):
            RetentionPolicy(id=1, entity_name="x", action="hard-delete", retention_period_days=-1)

    def test_unknown_action_is_accepted_at_load_time(self):
        """Test that an unknown action is left for the engine to report."""
        policy = RetentionPolicy(id=1, entity_name="x", action="archive", retention_period_days=1)

        assert policy.action == "archive"


class TestLegalHold:
    """Test legal hold detection from criteria."""

    def _policy(self, criteria):
        return RetentionPolicy(
            id=1, entity_name="x", action="hard-delete", retention_period_days=1, criteria=criteria
        )

    def test_boolean_flag(self):
        hold = self._policy({"legalHold": True}).legal_hold

        assert hold == {"reason": "policy marked with legalHold criteria flag", "owner": None}

    def test_active_descriptor_with_reason_and_owner(self):
        hold = self._policy({
            "legalHold": {"active": True, "reason": "litigation 2024-17", "owner": "legal@acme"}
        }).legal_hold

        assert hold == {"reason": "litigation 2024-17", "owner": "legal@acme"}

    def test_inactive_descriptor_is_not_a_hold(self):
        assert self._policy({"legalHold": {"active": False, "reason": "closed"}}).legal_hold is None

    def test_truthy_non_boolean_is_not_a_hold(self):
        """Test that only literal true activates a hold."""
        assert self._policy({"legalHold": "yes"}).legal_hold is None
        assert self._policy({}).legal_hold is None


class TestVerificationConfig:
    """Test VerificationConfig defaults and clamping."""

    def test_defaults(self):
        config = VerificationConfig()

        assert config.enabled is True
        assert config.fail_on_residual is True
        assert config.sample_size == 5

    def test_sample_size_clamped(self):
        config = VerificationConfig(sample_size=10_000)

        assert config.sample_size == MAX_VERIFICATION_SAMPLE_SIZE

    def test_sample_size_must_be_positive(self):
        with pytest.raises(ValidationError):
            VerificationConfig(sample_size=0)


class TestRetentionJobConfig:
    """Test RetentionJobConfig fallbacks."""

    def test_defaults(self):
        config = RetentionJobConfig()

        assert config.cron_expression == "0 3 * * *"
        assert config.timezone == "UTC"
        assert config.max_consecutive_failures == 3
        assert config.failure_backoff_minutes == 15
        assert config.backoff_exponent_base == 2
        assert config.max_backoff_minutes == 1440
        assert config.alert_threshold == 500

    @pytest.mark.parametrize("value", [0, -4, "abc", None])
    def test_non_positive_values_fall_back_to_defaults(self, value):
        """Test that a bad environment value never disables failure handling."""
        config = RetentionJobConfig(
            max_consecutive_failures=value,
            failure_backoff_minutes=value,
            alert_threshold=value,
        )

        assert config.max_consecutive_failures == 3
        assert config.failure_backoff_minutes == 15
        assert config.alert_threshold == 500

    def test_positive_values_kept(self):
        config = RetentionJobConfig(max_consecutive_failures="5", failure_backoff_minutes=30)

        assert config.max_consecutive_failures == 5
        assert config.failure_backoff_minutes == 30


class TestReportingConfig:
    """Test audience parsing."""

    def test_audience_split_on_commas_and_whitespace(self):
        config = ReportingConfig(audience="dpo@acme.test, security@acme.test  ops@acme.test")

        assert config.audience == ["dpo@acme.test", "security@acme.test", "ops@acme.test"]

    def test_empty_audience(self):
        assert ReportingConfig(audience="").audience == []
        assert ReportingConfig(audience=None).audience == []


class TestSettings:
    """Test nested config construction from flat settings."""

    def test_retention_job_config_from_settings(self):
        settings = Settings(
            RETENTION_CRON_EXPRESSION="30 2 * * *",
            RETENTION_TIMEZONE="Europe/Vienna",
            RETENTION_MAX_CONSECUTIVE_FAILURES=0,
            RETENTION_VERIFICATION_SAMPLE_SIZE=9,
            RETENTION_REPORTING_AUDIENCE="a@x.test,b@x.test",
        )

        config = settings.retention_job_config()

        assert config.cron_expression == "30 2 * * *"
        assert config.timezone == "Europe/Vienna"
        assert config.max_consecutive_failures == 3
        assert config.verification.sample_size == 9
        assert config.reporting.audience == ["a@x.test", "b@x.test"]

    def test_partitioning_config_from_settings(self):
        settings = Settings(
            PARTITIONING_ENABLED=True,
            PARTITIONING_ARCHIVE_BUCKET="cold-storage",
            PARTITIONING_MAX_EXPORT_ROWS=1000,
        )

        config = settings.partitioning_config()

        assert config.enabled is True
        assert config.archive.bucket == "cold-storage"
        assert config.archive.prefix == "archives"
        assert config.max_export_rows == 1000
        assert config.min_active_partitions == 1


class TestRetentionRunSummary:
    """Test run summary aggregation."""

    def _result(self, policy_id, status, affected, pre_run=None, verification=None):
        return RetentionExecutionResult(
            policy_id=policy_id,
            entity_name=f"entity_{policy_id}",
            action="hard-delete",
            status=status,
            affected_rows=affected,
            pre_run_count=pre_run,
            verification=verification,
        )

    def test_totals_include_residual_failures(self):
        """Test that committed-but-residual results count toward totals."""
        summary = RetentionRunSummary(
            run_id="run-1",
            mode="commit",
            dry_run=False,
            results=[
                self._result(1, STATUS_EXECUTED, 4, 4, VerificationResult(status=VERIFICATION_CLEARED, remaining_rows=0)),
                self._result(2, STATUS_FAILED, 3, 5, VerificationResult(status=VERIFICATION_RESIDUAL, remaining_rows=2)),
                self._result(3, STATUS_SKIPPED_LEGAL_HOLD, 0),
            ],
        )

        totals = summary.totals()

        assert totals.affected_rows == 7
        assert totals.matched_rows == 9
        assert totals.residual_policies == [
            {"policy_id": 2, "entity_name": "entity_2", "remaining_rows": 2}
        ]
        assert [r.policy_id for r in summary.executed] == [1]
        assert [r.policy_id for r in summary.failed] == [2]

    def test_matched_rows_fall_back_to_affected(self):
        summary = RetentionRunSummary(
            run_id="run-1",
            mode="commit",
            dry_run=False,
            results=[self._result(1, STATUS_EXECUTED, 6)],
        )

        assert summary.totals().matched_rows == 6

    def test_results_are_immutable(self):
        result = self._result(1, STATUS_EXECUTED, 1)

        with pytest.raises(ValidationError):
            result.affected_rows = 2


class TestResumeApprovalGate:
    def test_default_gate_is_active(self):
        gate = ResumeApprovalGate()

        assert gate.is_paused is False
        assert gate.resume_approved is False

    def test_round_trips_through_json_settings_value(self):
        gate = ResumeApprovalGate(status="paused", resume_token="tok", escalations=2)

        restored = ResumeApprovalGate.model_validate(gate.model_dump(mode="json"))

        assert restored.is_paused is True
        assert restored.resume_token == "tok"
        assert restored.escalations == 2
