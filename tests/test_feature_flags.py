import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from schemas import DEDUP_MERGE, DEDUP_PREFER_RICHER
from services.feature_flags import FeatureFlagsManager, ImportPolicy


def test_default_policy():
    flags = FeatureFlagsManager()
    flags.clear_overrides()
    policy = flags.import_policy("tenant-a")
    assert isinstance(policy, ImportPolicy)
    assert policy.dedup_policy in (DEDUP_MERGE, DEDUP_PREFER_RICHER)
    assert policy.extract_order_reference is True


def test_tenant_override_does_not_leak():
    flags = FeatureFlagsManager()
    assert flags.set_flag("import.dedup_policy", DEDUP_PREFER_RICHER, "tenant-a", "test")
    assert flags.set_flag("import.summary_only_placeholder", True, "tenant-a", "test")

    assert flags.import_policy("tenant-a").dedup_policy == DEDUP_PREFER_RICHER
    assert flags.import_policy("tenant-a").summary_only_placeholder is True
    assert flags.import_policy("tenant-b").dedup_policy == flags.default_flags["import.dedup_policy"]

    flags.clear_overrides("tenant-a")
    assert flags.get_all_flags("tenant-a") == flags.get_all_flags()


def test_invalid_values_are_rejected():
    flags = FeatureFlagsManager()
    assert flags.set_flag("import.dedup_policy", "sum_everything") is False
    assert flags.set_flag("import.strict_fee_columns", "yes") is False
    assert flags.set_flag("bundling.enabled", True) is False
    assert flags.change_history == []


def test_policy_snapshot_is_immutable_after_flag_change():
    flags = FeatureFlagsManager()
    snapshot = flags.import_policy("tenant-a")
    flags.set_flag("import.strict_fee_columns", not snapshot.strict_fee_columns, "tenant-a")
    assert flags.import_policy("tenant-a").strict_fee_columns is not snapshot.strict_fee_columns
    assert len(flags.change_history) == 1
