# =============================================================================
# File: scanflow/configuration/store.py
# Description: Scan profiles, automation rules, detection rules, exclusion
#   lists and global settings.
#
#   Every mutation validates first and raises ValidationError on bad input.
#   Unknown ids raise NotFoundError. Built-in entities (custom=False) are
#   seeded on startup; they can be updated or disabled but not deleted.
#
#   should_exclude_target(target) answers "may we scan this?" for the
#   scheduler: exact domains, glob patterns (fnmatch), exact IPs, CIDR
#   ranges (ipaddress) and ports.
# =============================================================================

from __future__ import annotations

import copy
import fnmatch
import ipaddress
import logging
import threading
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from scanflow.core.base import (
    AutomationRule,
    DetectionRule,
    ExclusionList,
    ScanProfile,
    camel_keys,
    new_id,
    now_utc,
)
from scanflow.core.conditions import validate_condition
from scanflow.errors import NotFoundError, ValidationError
from scanflow.rules.engine import validate_automation_rule
from scanflow.store.base import Collections, Repository

from . import defaults

logger = logging.getLogger(__name__)

REQUIRED_PROFILE_SECTIONS = ("enumeration", "dns_analysis", "http_analysis")
EXCLUSION_TYPES = ("global", "service", "environment", "custom")
SEVERITIES = ("critical", "high", "medium", "low", "info")
EXPORT_TYPES = ("all", "profiles", "rules", "exclusions", "global")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_scan_profile(profile: ScanProfile) -> None:
    if not profile.name.strip():
        raise ValidationError("Profile name is required")
    if not isinstance(profile.config, dict) or not profile.config:
        raise ValidationError("Profile config is required")
    for section in REQUIRED_PROFILE_SECTIONS:
        if not isinstance(profile.config.get(section), dict):
            raise ValidationError(f"Missing required config section: {section}")


def validate_detection_rule(rule: DetectionRule) -> None:
    if not rule.name.strip() or not rule.type:
        raise ValidationError("Rule name and type are required")
    if rule.severity not in SEVERITIES:
        raise ValidationError(f"Invalid severity '{rule.severity}'. Must be one of: {', '.join(SEVERITIES)}")
    if not rule.conditions:
        raise ValidationError("At least one condition is required")
    if not rule.actions:
        raise ValidationError("At least one action is required")
    for cond in rule.conditions:
        validate_condition(cond, closed_schema=False)
    for action in rule.actions:
        if not isinstance(action, dict) or not action.get("type"):
            raise ValidationError("Every action needs a type")


def validate_exclusion_list(lst: ExclusionList) -> None:
    if not lst.name.strip() or not lst.type:
        raise ValidationError("List name, type, and exclusions are required")
    if lst.type not in EXCLUSION_TYPES:
        raise ValidationError(f"Invalid exclusion list type: {lst.type}")
    if not isinstance(lst.exclusions, dict):
        raise ValidationError("exclusions must be an object")

    for key in ("domains", "ips", "ports", "patterns"):
        value = lst.exclusions.setdefault(key, [])
        if not isinstance(value, list):
            raise ValidationError(f"exclusions.{key} must be a list")

    for entry in lst.exclusions["ips"]:
        try:
            ipaddress.ip_network(str(entry), strict=False)
        except ValueError:
            raise ValidationError(f"Invalid IP or CIDR in exclusions: {entry}")

    ports = []
    for entry in lst.exclusions["ports"]:
        try:
            port = int(entry)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid port in exclusions: {entry}")
        if not 0 < port < 65536:
            raise ValidationError(f"Port out of range: {port}")
        ports.append(port)
    lst.exclusions["ports"] = ports


# ---------------------------------------------------------------------------
# Exclusion matching
# ---------------------------------------------------------------------------

def detect_target_type(target: str) -> str:
    if str(target).isdigit():
        return "port"
    try:
        ipaddress.ip_address(target)
        return "ip"
    except ValueError:
        return "domain"


def _host_of(target: str) -> str:
    target = str(target).strip()
    if "://" in target:
        target = urlparse(target).hostname or target
    return target.rstrip(".").lower()


def _domain_excluded(domain: str, exclusions: dict) -> bool:
    for entry in exclusions.get("domains") or []:
        entry = str(entry).lower()
        if domain == entry or (("*" in entry or "?" in entry) and fnmatch.fnmatchcase(domain, entry)):
            return True
    return any(fnmatch.fnmatchcase(domain, str(p).lower()) for p in exclusions.get("patterns") or [])


def _ip_excluded(ip: str, exclusions: dict) -> bool:
    addr = ipaddress.ip_address(ip)
    for entry in exclusions.get("ips") or []:
        try:
            network = ipaddress.ip_network(str(entry), strict=False)
        except ValueError:
            continue
        if addr.version == network.version and addr in network:
            return True
    return False


def _port_excluded(port: str, exclusions: dict) -> bool:
    return int(port) in [int(p) for p in exclusions.get("ports") or []]


_MATCHERS = {"domain": _domain_excluded, "ip": _ip_excluded, "port": _port_excluded}


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class ConfigurationStore:
    def __init__(self, repository: Repository, global_settings: Optional[Dict[str, Any]] = None):
        self.repository = repository
        self._lock = threading.RLock()
        self._global = copy.deepcopy(defaults.GLOBAL_SETTINGS)
        for section, values in (global_settings or {}).items():
            self._global.setdefault(section, {}).update(values)

    def load_defaults(self) -> None:
        """Seed built-in entities that aren't already stored."""
        seeded = 0
        for collection, cls, items in (
            (Collections.SCAN_PROFILES, ScanProfile, defaults.SCAN_PROFILES),
            (Collections.DETECTION_RULES, DetectionRule, defaults.DETECTION_RULES),
            (Collections.EXCLUSION_LISTS, ExclusionList, defaults.EXCLUSION_LISTS),
        ):
            for item in items:
                if not self.repository.exists(collection, item["id"]):
                    self.repository.save(collection, cls.from_dict(copy.deepcopy(item)))
                    seeded += 1
        logger.info(f"Configuration defaults loaded ({seeded} new entities)")

    # ── generic helpers ─────────────────────────────────────────

    def _get(self, collection: str, entity_id: str, label: str):
        entity = self.repository.get(collection, entity_id)
        if entity is None:
            raise NotFoundError(f"{label} not found: {entity_id}")
        return entity

    def _create(self, collection: str, entity, validator, label: str, id_prefix: str):
        if not getattr(entity, "id", None):
            entity.id = new_id(id_prefix)
        validator(entity)
        with self._lock:
            if self.repository.exists(collection, entity.id):
                raise ValidationError(f"{label} already exists: {entity.id}")
            self.repository.save(collection, entity)
        logger.info(f"Created {label.lower()}: {entity.name} ({entity.id})")
        return entity

    def _update(self, collection: str, entity_id: str, cls, patch: Dict[str, Any], validator, label: str):
        with self._lock:
            current = self._get(collection, entity_id, label)
            merged = current.to_dict()
            merged.update(camel_keys(patch))
            merged["id"] = entity_id
            updated = cls.from_dict(merged)
            if hasattr(updated, "custom"):
                updated.custom = current.custom
            if hasattr(updated, "created_at"):
                updated.created_at = current.created_at
            if hasattr(updated, "updated_at"):
                updated.updated_at = now_utc()
            validator(updated)
            self.repository.save(collection, updated)
        logger.info(f"Updated {label.lower()}: {updated.name}")
        return updated

    def _delete(self, collection: str, entity_id: str, label: str) -> None:
        with self._lock:
            entity = self._get(collection, entity_id, label)
            if getattr(entity, "custom", True) is False:
                raise ValidationError(f"Built-in {label.lower()} '{entity_id}' cannot be deleted; disable it instead")
            self.repository.delete(collection, entity_id)
        logger.info(f"Deleted {label.lower()}: {entity_id}")

    # ── scan profiles ───────────────────────────────────────────

    def list_profiles(self) -> List[ScanProfile]:
        return self.repository.list(Collections.SCAN_PROFILES)

    def get_profile(self, profile_id: str) -> ScanProfile:
        return self._get(Collections.SCAN_PROFILES, profile_id, "Scan profile")

    def create_profile(self, data: Dict[str, Any]) -> ScanProfile:
        profile = ScanProfile.from_dict({**(data or {}), "custom": True, "usage_count": 0})
        return self._create(Collections.SCAN_PROFILES, profile, validate_scan_profile, "Scan profile", "profile")

    def update_profile(self, profile_id: str, patch: Dict[str, Any]) -> ScanProfile:
        return self._update(Collections.SCAN_PROFILES, profile_id, ScanProfile, patch,
                            validate_scan_profile, "Scan profile")

    def delete_profile(self, profile_id: str) -> None:
        self._delete(Collections.SCAN_PROFILES, profile_id, "Scan profile")

    def record_profile_usage(self, profile_id: str) -> ScanProfile:
        with self._lock:
            profile = self.get_profile(profile_id)
            profile.usage_count += 1
            self.repository.save(Collections.SCAN_PROFILES, profile)
        return profile

    # ── automation rules ────────────────────────────────────────

    def list_automation_rules(self) -> List[AutomationRule]:
        return self.repository.list(Collections.AUTOMATION_RULES)

    def get_automation_rule(self, rule_id: str) -> AutomationRule:
        return self._get(Collections.AUTOMATION_RULES, rule_id, "Automation rule")

    def create_automation_rule(self, data: Dict[str, Any]) -> AutomationRule:
        rule = AutomationRule.from_dict(data or {})
        rule.triggered_count = 0
        rule.last_triggered = None
        return self._create(Collections.AUTOMATION_RULES, rule, validate_automation_rule,
                            "Automation rule", "rule")

    def update_automation_rule(self, rule_id: str, patch: Dict[str, Any]) -> AutomationRule:
        # Counters are owned by the rule engine
        patch = {k: v for k, v in (patch or {}).items()
                 if k not in ("triggeredCount", "triggered_count", "lastTriggered", "last_triggered")}
        return self._update(Collections.AUTOMATION_RULES, rule_id, AutomationRule, patch,
                            validate_automation_rule, "Automation rule")

    def delete_automation_rule(self, rule_id: str) -> None:
        self._delete(Collections.AUTOMATION_RULES, rule_id, "Automation rule")

    # ── detection rules ─────────────────────────────────────────

    def list_detection_rules(self) -> List[DetectionRule]:
        return self.repository.list(Collections.DETECTION_RULES)

    def get_detection_rule(self, rule_id: str) -> DetectionRule:
        return self._get(Collections.DETECTION_RULES, rule_id, "Detection rule")

    def create_detection_rule(self, data: Dict[str, Any]) -> DetectionRule:
        rule = DetectionRule.from_dict({**(data or {}), "custom": True, "triggered_count": 0})
        return self._create(Collections.DETECTION_RULES, rule, validate_detection_rule,
                            "Detection rule", "detection")

    def update_detection_rule(self, rule_id: str, patch: Dict[str, Any]) -> DetectionRule:
        return self._update(Collections.DETECTION_RULES, rule_id, DetectionRule, patch,
                            validate_detection_rule, "Detection rule")

    def delete_detection_rule(self, rule_id: str) -> None:
        self._delete(Collections.DETECTION_RULES, rule_id, "Detection rule")

    # ── exclusion lists ─────────────────────────────────────────

    def list_exclusion_lists(self) -> List[ExclusionList]:
        return self.repository.list(Collections.EXCLUSION_LISTS)

    def get_exclusion_list(self, list_id: str) -> ExclusionList:
        return self._get(Collections.EXCLUSION_LISTS, list_id, "Exclusion list")

    def create_exclusion_list(self, data: Dict[str, Any]) -> ExclusionList:
        lst = ExclusionList.from_dict({**(data or {}), "custom": True})
        return self._create(Collections.EXCLUSION_LISTS, lst, validate_exclusion_list,
                            "Exclusion list", "exclusion")

    def update_exclusion_list(self, list_id: str, patch: Dict[str, Any]) -> ExclusionList:
        return self._update(Collections.EXCLUSION_LISTS, list_id, ExclusionList, patch,
                            validate_exclusion_list, "Exclusion list")

    def delete_exclusion_list(self, list_id: str) -> None:
        self._delete(Collections.EXCLUSION_LISTS, list_id, "Exclusion list")

    def should_exclude_target(self, target: str, target_type: Optional[str] = None) -> Dict[str, Any]:
        host = _host_of(target)
        target_type = target_type or detect_target_type(host)
        matcher = _MATCHERS.get(target_type)
        if matcher is None:
            return {"excluded": False}

        for lst in self.list_exclusion_lists():
            if not lst.enabled:
                continue
            try:
                hit = matcher(host, lst.exclusions or {})
            except ValueError:
                hit = False
            if hit:
                return {
                    "excluded": True,
                    "reason": f"Matched exclusion list: {lst.name}",
                    "listId": lst.id,
                }
        return {"excluded": False}

    # ── global settings ─────────────────────────────────────────

    def get_global_settings(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._global)

    def update_global_settings(self, section: str, values: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(values, dict):
            raise ValidationError("Settings values must be an object")
        with self._lock:
            self._global.setdefault(section, {}).update(values)
            return copy.deepcopy(self._global[section])

    # ── export / import / stats ─────────────────────────────────

    def export_configuration(self, export_type: str = "all") -> Dict[str, Any]:
        if export_type not in EXPORT_TYPES:
            raise ValidationError(f"Invalid export type '{export_type}'. Must be one of: {', '.join(EXPORT_TYPES)}")

        out: Dict[str, Any] = {"exportedAt": now_utc().isoformat(), "version": "1.0"}
        if export_type in ("all", "profiles"):
            out["scanProfiles"] = [p.to_dict() for p in self.list_profiles()]
        if export_type in ("all", "rules"):
            out["automationRules"] = [r.to_dict() for r in self.list_automation_rules()]
            out["detectionRules"] = [r.to_dict() for r in self.list_detection_rules()]
        if export_type in ("all", "exclusions"):
            out["exclusionLists"] = [e.to_dict() for e in self.list_exclusion_lists()]
        if export_type in ("all", "global"):
            out["globalConfig"] = self.get_global_settings()
        return out

    def import_configuration(self, data: Dict[str, Any], overwrite: bool = False) -> Dict[str, Any]:
        """
        Import entities exported by export_configuration(). Existing ids are
        skipped unless overwrite=True. Invalid entries are reported in
        `errors` and do not abort the rest of the import.
        """
        data = data or {}
        results: Dict[str, Any] = {
            "imported": {"scanProfiles": 0, "automationRules": 0, "detectionRules": 0,
                         "exclusionLists": 0, "globalConfig": 0},
            "skipped": 0,
            "errors": [],
        }

        sections = (
            ("scanProfiles", "scan_profiles", Collections.SCAN_PROFILES, ScanProfile, validate_scan_profile),
            ("automationRules", "automation_rules", Collections.AUTOMATION_RULES, AutomationRule,
             validate_automation_rule),
            ("detectionRules", "detection_rules", Collections.DETECTION_RULES, DetectionRule,
             validate_detection_rule),
            ("exclusionLists", "exclusion_lists", Collections.EXCLUSION_LISTS, ExclusionList,
             validate_exclusion_list),
        )

        for key, snake, collection, cls, validator in sections:
            for item in data.get(key) or data.get(snake) or []:
                item_id = item.get("id") if isinstance(item, dict) else None
                try:
                    if not item_id:
                        raise ValidationError("id is required")
                    entity = cls.from_dict(item)
                    validator(entity)
                    with self._lock:
                        if self.repository.exists(collection, item_id) and not overwrite:
                            results["skipped"] += 1
                            continue
                        self.repository.save(collection, entity)
                    results["imported"][key] += 1
                except (ValidationError, KeyError, TypeError, ValueError) as e:
                    message = e.message if isinstance(e, ValidationError) else str(e)
                    results["errors"].append(f"{key} {item_id or '?'}: {message}")

        global_config = data.get("globalConfig") or data.get("global_config") or {}
        for section, values in global_config.items():
            if isinstance(values, dict):
                self.update_global_settings(section, values)
                results["imported"]["globalConfig"] += 1
            else:
                results["errors"].append(f"globalConfig {section}: must be an object")

        logger.info(f"Configuration import completed: {results['imported']}")
        return results

    def get_stats(self) -> Dict[str, Any]:
        profiles = self.list_profiles()
        detection = self.list_detection_rules()
        automation = self.list_automation_rules()
        exclusions = self.list_exclusion_lists()
        return {
            "scanProfiles": {
                "total": len(profiles),
                "custom": sum(1 for p in profiles if p.custom),
                "default": sum(1 for p in profiles if not p.custom),
            },
            "automationRules": {
                "total": len(automation),
                "enabled": sum(1 for r in automation if r.enabled),
            },
            "detectionRules": {
                "total": len(detection),
                "enabled": sum(1 for r in detection if r.enabled),
                "custom": sum(1 for r in detection if r.custom),
            },
            "exclusionLists": {
                "total": len(exclusions),
                "enabled": sum(1 for e in exclusions if e.enabled),
                "custom": sum(1 for e in exclusions if e.custom),
            },
            "globalConfig": {"totalSettings": len(self._global)},
        }
