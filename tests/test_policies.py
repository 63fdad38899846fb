"""Tests for recovery policies and the policy table."""

from __future__ import annotations

import pytest

from mediaflow.recovery.policies import BUILTIN_POLICIES, PolicyTable, RecoveryPolicy


class TestRecoveryPolicy:
    """Tests for RecoveryPolicy."""

    def test_defaults(self):
        policy = RecoveryPolicy(tool="x")
        assert policy.max_retries == 3
        assert policy.initial_delay == 1.0
        assert policy.backoff_factor == 2.0
        assert policy.max_delay == 10.0
        assert policy.fallback_action is None
        assert policy.continue_on_failure is True

    def test_is_immutable(self):
        policy = RecoveryPolicy(tool="x")
        with pytest.raises(AttributeError):
            policy.max_retries = 5  # type: ignore[misc]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_retries": -1},
            {"initial_delay": -0.5},
            {"max_delay": -1.0},
            {"backoff_factor": 0.5},
        ],
    )
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RecoveryPolicy(tool="x", **kwargs)

    def test_delays_are_clamped(self):
        policy = RecoveryPolicy(tool="x", max_retries=4, initial_delay=2.0, backoff_factor=3.0, max_delay=10.0)
        assert policy.delays() == [2.0, 6.0, 10.0, 10.0]

    def test_initial_delay_above_cap(self):
        policy = RecoveryPolicy(tool="x", max_retries=2, initial_delay=30.0, max_delay=5.0)
        assert policy.delays() == [5.0, 5.0]

    def test_no_retries_no_delays(self):
        assert RecoveryPolicy(tool="x", max_retries=0).delays() == []

    def test_dict_roundtrip(self):
        policy = RecoveryPolicy("generate_visuals", 3, 2.0, 2.0, 15.0, "use_placeholder", True)
        assert RecoveryPolicy.from_dict("generate_visuals", policy.to_dict()) == policy

    def test_from_dict_empty_fallback_is_none(self):
        policy = RecoveryPolicy.from_dict("x", {"fallback_action": ""})
        assert policy.fallback_action is None


class TestBuiltinPolicies:
    """The shipped per-tool table."""

    def test_every_tool_listed_once(self):
        names = [p.tool for p in BUILTIN_POLICIES]
        assert len(names) == len(set(names))

    def test_generate_visuals(self):
        policy = PolicyTable().get_recovery_strategy("generate_visuals")
        assert policy.max_retries == 3
        assert policy.fallback_action == "use_placeholder"
        assert policy.continue_on_failure is True

    def test_planning_must_not_continue(self):
        table = PolicyTable()
        assert table.get_recovery_strategy("plan_video").continue_on_failure is False
        assert table.get_recovery_strategy("narrate_scenes").continue_on_failure is False

    def test_export_bundles_assets(self):
        policy = PolicyTable().get_recovery_strategy("export_final_video")
        assert policy.fallback_action == "provide_asset_bundle"
        assert policy.continue_on_failure is False


class TestPolicyTable:
    """Tests for PolicyTable lookup and configuration."""

    def test_unknown_tool_gets_default(self):
        table = PolicyTable()
        policy = table.get_recovery_strategy("get_production_status")
        assert policy.tool == "get_production_status"
        assert policy.max_retries == table.default.max_retries
        assert "get_production_status" not in table

    def test_custom_default(self):
        table = PolicyTable([], default=RecoveryPolicy(tool="*", max_retries=1))
        assert table.get_recovery_strategy("anything").max_retries == 1
        assert len(table) == 0

    def test_set_replaces(self):
        table = PolicyTable()
        table.set(RecoveryPolicy("generate_music", max_retries=0))
        assert table.get_recovery_strategy("generate_music").max_retries == 0

    def test_iterates_policies(self):
        table = PolicyTable()
        assert {p.tool for p in table} == {p.tool for p in BUILTIN_POLICIES}

    def test_from_config_merges_overrides(self):
        table = PolicyTable.from_config(
            default={"max_retries": 1},
            overrides={
                "generate_visuals": {"max_retries": 5},
                "custom_tool": {"fallback_action": "skip_subtitles"},
            },
        )

        visuals = table.get_recovery_strategy("generate_visuals")
        assert visuals.max_retries == 5
        assert visuals.fallback_action == "use_placeholder"
        assert visuals.max_delay == 15.0

        custom = table.get_recovery_strategy("custom_tool")
        assert custom.max_retries == 1
        assert custom.fallback_action == "skip_subtitles"

        assert table.get_recovery_strategy("unknown").max_retries == 1
