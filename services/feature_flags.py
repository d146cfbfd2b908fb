"""
Feature Flags
Import policy switches with per-tenant overrides.

Policies are snapshotted once per batch (see import_policy) so one import never
mixes two dedup or placeholder behaviours.
"""
from typing import Dict, Any, Optional
import logging
from datetime import datetime
from dataclasses import dataclass

import settings
from schemas import DEDUP_MERGE, DEDUP_POLICIES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportPolicy:
    """Import behaviour resolved for one tenant at the start of a batch"""
    dedup_policy: str = DEDUP_MERGE
    summary_only_placeholder: bool = False
    strict_fee_columns: bool = False
    skip_duplicate_files: bool = True
    extract_order_reference: bool = True


class FeatureFlagsManager:
    """Manages import feature flags and their per-tenant overrides"""

    def __init__(self):
        self.default_flags: Dict[str, Any] = {
            # Line-item dedup: "merge" or "prefer_richer"
            "import.dedup_policy": settings.IMPORT_DEDUP_POLICY,
            # Synthesize an "Order Summary" line for orders without item rows
            "import.summary_only_placeholder": settings.IMPORT_SUMMARY_ONLY_PLACEHOLDER,
            # Only named fee columns count. When off, a header counts if "fee"/"fees" is a
            # whole word, so "Coffee" is excluded but run-together "processingfee" is too
            "import.strict_fee_columns": settings.IMPORT_STRICT_FEE_COLUMNS,
            # Skip byte-identical files uploaded twice in one batch
            "import.skip_duplicate_files": settings.IMPORT_SKIP_DUPLICATE_FILES,

            # Shipping labels
            "shipping.extract_order_reference": True,
        }
        if self.default_flags["import.dedup_policy"] not in DEDUP_POLICIES:
            logger.warning(
                f"Unknown IMPORT_DEDUP_POLICY={self.default_flags['import.dedup_policy']!r}, using {DEDUP_MERGE}"
            )
            self.default_flags["import.dedup_policy"] = DEDUP_MERGE

        self._flag_cache: Dict[str, Any] = self.default_flags.copy()
        self._tenant_overrides: Dict[str, Dict[str, Any]] = {}

        # Flag change history
        self.change_history = []

    def get_flag(self, flag_key: str, tenant_id: Optional[str] = None, default: Any = False) -> Any:
        """Get feature flag value with tenant-specific overrides"""
        if tenant_id and tenant_id in self._tenant_overrides:
            tenant_flags = self._tenant_overrides[tenant_id]
            if flag_key in tenant_flags:
                return tenant_flags[flag_key]
        return self._flag_cache.get(flag_key, default)

    def get_all_flags(self, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        """Get all feature flags for a tenant or globally"""
        all_flags = self._flag_cache.copy()
        if tenant_id and tenant_id in self._tenant_overrides:
            all_flags.update(self._tenant_overrides[tenant_id])
        return all_flags

    def set_flag(self, flag_key: str, value: Any, tenant_id: Optional[str] = None,
                 updated_by: str = "system") -> bool:
        """Set feature flag value globally or for one tenant"""
        if flag_key not in self.default_flags:
            logger.warning(f"Invalid flag key: {flag_key}")
            return False
        if type(value) is not type(self.default_flags[flag_key]):
            logger.warning(f"Invalid value type for {flag_key}: {value!r}")
            return False
        if flag_key == "import.dedup_policy" and value not in DEDUP_POLICIES:
            logger.warning(f"Invalid dedup policy: {value!r}")
            return False

        if tenant_id:
            self._tenant_overrides.setdefault(tenant_id, {})[flag_key] = value
        else:
            self._flag_cache[flag_key] = value

        self._record_flag_change(flag_key, value, tenant_id, updated_by)
        logger.info(f"Set flag {flag_key}={value} for tenant={tenant_id} by {updated_by}")
        return True

    def clear_overrides(self, tenant_id: Optional[str] = None) -> None:
        """Drop tenant overrides (all tenants when tenant_id is None) and restore defaults"""
        if tenant_id:
            self._tenant_overrides.pop(tenant_id, None)
        else:
            self._tenant_overrides.clear()
            self._flag_cache = self.default_flags.copy()

    def import_policy(self, tenant_id: Optional[str] = None) -> ImportPolicy:
        return ImportPolicy(
            dedup_policy=self.get_flag("import.dedup_policy", tenant_id, DEDUP_MERGE),
            summary_only_placeholder=bool(self.get_flag("import.summary_only_placeholder", tenant_id)),
            strict_fee_columns=bool(self.get_flag("import.strict_fee_columns", tenant_id)),
            skip_duplicate_files=bool(self.get_flag("import.skip_duplicate_files", tenant_id, True)),
            extract_order_reference=bool(self.get_flag("shipping.extract_order_reference", tenant_id, True)),
        )

    def _record_flag_change(self, flag_key: str, value: Any, tenant_id: Optional[str], updated_by: str):
        """Record flag change in history"""
        self.change_history.append({
            "timestamp": datetime.now().isoformat(),
            "flag_key": flag_key,
            "new_value": value,
            "tenant_id": tenant_id,
            "updated_by": updated_by,
        })
        # Keep only last 100 changes
        if len(self.change_history) > 100:
            self.change_history = self.change_history[-100:]


# Global feature flags manager instance
feature_flags = FeatureFlagsManager()
