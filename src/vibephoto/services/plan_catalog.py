"""
Plan Catalog - subscription plans and credit packages loaded from plans.yaml
"""
from pathlib import Path
from typing import Dict, Any, List, Optional

import yaml

_CATALOG_PATH = Path(__file__).parent.parent / "plans.yaml"
_catalog: Optional[Dict[str, Any]] = None


def _load_catalog() -> Dict[str, Any]:
    """Load and cache the plan catalog"""
    global _catalog
    if _catalog is None:
        with open(_CATALOG_PATH, "r", encoding="utf-8") as f:
            _catalog = yaml.safe_load(f) or {}
    return _catalog


def get_plans() -> Dict[str, Dict[str, Any]]:
    return _load_catalog().get("plans", {})


def get_plan(plan: str) -> Dict[str, Any]:
    """Plan settings, falling back to STARTER for unknown plans"""
    plans = get_plans()
    return plans.get((plan or "").upper(), plans["STARTER"])


def is_valid_plan(plan: str) -> bool:
    return (plan or "").upper() in get_plans()


def get_plan_credits(plan: str) -> int:
    return int(get_plan(plan)["credits"])


def get_credit_packages() -> List[Dict[str, Any]]:
    """Active credit packages ordered for display, each with its id"""
    packages = _load_catalog().get("credit_packages", {})
    result = [dict(package, id=package_id) for package_id, package in packages.items()]
    return sorted(result, key=lambda p: p.get("sort_order", 0))


def get_credit_package(package_id: str) -> Optional[Dict[str, Any]]:
    for package in get_credit_packages():
        if package["id"] == (package_id or "").upper():
            return package
    return None
