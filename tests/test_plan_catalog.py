"""
Tests for the plan catalog
"""
from vibephoto.services.plan_catalog import (
    get_plans,
    get_plan,
    get_plan_credits,
    is_valid_plan,
    get_credit_packages,
    get_credit_package,
)


class TestPlans:
    """Subscription plans"""

    def test_three_plans(self):
        assert set(get_plans()) == {"STARTER", "PREMIUM", "GOLD"}

    def test_plan_credits(self):
        assert get_plan_credits("STARTER") == 50
        assert get_plan_credits("premium") == 200
        assert get_plan_credits("GOLD") == 1000

    def test_model_limits(self):
        assert get_plan("STARTER")["max_models"] == 1
        assert get_plan("PREMIUM")["max_models"] == 3
        assert get_plan("GOLD")["max_models"] is None

    def test_unknown_plan_falls_back_to_starter(self):
        assert get_plan("ENTERPRISE")["name"] == "Starter"
        assert not is_valid_plan("ENTERPRISE")
        assert is_valid_plan("gold")


class TestCreditPackages:
    """One-off packages"""

    def test_sorted_with_ids(self):
        packages = get_credit_packages()
        assert [p["id"] for p in packages][:2] == ["ESSENCIAL", "PROFISSIONAL"]
        assert all("id" in p for p in packages)

    def test_lookup_is_case_insensitive(self):
        package = get_credit_package("profissional")
        assert package["credits"] == 300
        assert package["bonus_credits"] == 50
        assert get_credit_package("NOPE") is None
