"""
Pre-checks: prerequisite and budget validation

These are NOT agents - they are deterministic workflow steps that run
BEFORE any AI planning call to decide whether a deployment may proceed.
They read only the ExecutionContext; no side effects, no network calls.

Pre-checks:
1. Account readiness - connected, authorized, page/customer id present
2. Creative readiness - ad copy and visual assets for the platform
3. Budget sufficiency - daily budget against platform minimums
"""
from typing import Callable, Dict

from config.policy_config import BudgetPolicy, PlatformBudgetRule
from .state import (
    BudgetValidation,
    ExecutionContext,
    Message,
    Platform,
    ValidationResult,
    ValidationResultBuilder,
    freeze,
)

PLATFORM_LABELS = {
    Platform.GOOGLE_ADS: "Google Ads",
    Platform.FACEBOOK_ADS: "Facebook Ads",
}


def _dollars(amount: float) -> str:
    """Two decimals, unless that would hide a sub-cent shortfall."""
    if round(amount, 2) == round(amount, 4):
        return f"${amount:.2f}"
    return f"${amount:.4f}"


def check_budget(context: ExecutionContext, rule: PlatformBudgetRule) -> BudgetValidation:
    """
    Compare the campaign's daily budget with a platform's minimums.

    Below the hard minimum is an error; below the soft minimum of the
    platform's advanced campaign type is only a warning.
    """
    actual = context.daily_budget()
    daily = round(actual, 2)
    label = PLATFORM_LABELS[context.platform]
    errors = []
    warnings = []

    if actual < rule.hard_minimum:
        per = " per ad set" if context.platform == Platform.FACEBOOK_ADS else ""
        errors.append(Message(
            "below_minimum",
            f"Daily budget must be at least ${rule.hard_minimum:.2f}{per} for {label} "
            f"(allocated {_dollars(actual)}/day)",
        ))
    elif actual < rule.soft_minimum:
        warnings.append(Message(
            rule.soft_warning_code,
            f"Daily budget of {_dollars(actual)} is below the ${rule.soft_minimum:.2f} "
            f"recommended for {rule.soft_warning_label} campaigns",
        ))

    return BudgetValidation(
        daily_budget=daily,
        minimums=freeze({
            "daily_minimum": rule.hard_minimum,
            rule.soft_minimum_name: rule.soft_minimum,
        }),
        errors=tuple(errors),
        warnings=tuple(warnings),
    )


def _apply_budget(builder: ValidationResultBuilder, budget: BudgetValidation) -> None:
    for error in budget.errors:
        builder.add_error(f"budget_{error.code}", error.message)
    for warning in budget.warnings:
        builder.add_warning(f"budget_{warning.code}", warning.message)


def check_google_ads_prerequisites(
    context: ExecutionContext,
    rule: PlatformBudgetRule,
) -> ValidationResult:
    """Account authorization, ad copy, images, conversion tracking, budget."""
    result = ValidationResultBuilder()

    if not context.status("google_ads_authorized", False):
        result.add_error(
            "google_ads_not_authorized",
            "Google Ads account not authorized - please connect your Google Ads account",
        )
        return result.build()

    if not context.status("google_ads_customer_id"):
        result.add_error(
            "google_ads_not_connected",
            "No Google Ads customer ID on record for this customer",
        )
        return result.build()

    if not context.status("conversion_tracking", False):
        result.add_warning(
            "no_conversion_tracking",
            "No conversion tracking configured - Smart Bidding will be limited",
        )

    if not context.assets.has_ad_copy(Platform.GOOGLE_ADS):
        result.add_error("no_ad_copy", "No ad copy available for Google Ads")

    if context.assets.image_count == 0:
        result.add_warning(
            "no_images",
            "No images available - Display and Performance Max campaigns will be limited",
        )

    _apply_budget(result, check_budget(context, rule))
    return result.build()


def check_facebook_ads_prerequisites(
    context: ExecutionContext,
    rule: PlatformBudgetRule,
) -> ValidationResult:
    """Account, page, pixel, ad copy, visual creatives, budget."""
    result = ValidationResultBuilder()

    if not context.status("facebook_ads_account_id"):
        result.add_error("facebook_ads_not_connected", "Facebook Ads account not connected")
        return result.build()

    if not context.status("facebook_ads_authorized", False):
        result.add_error("facebook_ads_not_authorized", "Facebook Ads account not authorized")
        return result.build()

    if not context.status("facebook_page_id"):
        result.add_error(
            "facebook_page_not_connected",
            "Facebook Page not connected - required for ads",
        )
        return result.build()

    if not context.status("pixel_installed", False):
        result.add_warning(
            "no_pixel",
            "No Facebook Pixel configured - conversion tracking and Advantage+ campaigns will be limited",
        )

    if not context.assets.has_ad_copy(Platform.FACEBOOK_ADS):
        result.add_error("no_ad_copy", "No ad copy available for Facebook Ads")

    if context.assets.image_count == 0 and context.assets.video_count == 0:
        result.add_error(
            "no_creatives",
            "No images or videos available - Facebook Ads require visual creatives",
        )

    _apply_budget(result, check_budget(context, rule))
    return result.build()


_PLATFORM_CHECKS: Dict[Platform, Callable[[ExecutionContext, PlatformBudgetRule], ValidationResult]] = {
    Platform.GOOGLE_ADS: check_google_ads_prerequisites,
    Platform.FACEBOOK_ADS: check_facebook_ads_prerequisites,
}


class PrerequisiteValidator:
    """Platform-dispatching validator bound to a BudgetPolicy."""

    def __init__(self, budget_policy: BudgetPolicy):
        self.budget_policy = budget_policy

    def rule_for(self, platform: Platform) -> PlatformBudgetRule:
        return self.budget_policy.rule_for(platform.value)

    def validate_budget(self, context: ExecutionContext) -> BudgetValidation:
        return check_budget(context, self.rule_for(context.platform))

    def validate(self, context: ExecutionContext) -> ValidationResult:
        check = _PLATFORM_CHECKS[context.platform]
        return check(context, self.rule_for(context.platform))
