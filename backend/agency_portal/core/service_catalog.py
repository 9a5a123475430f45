"""
Service catalog: the agency's service templates.

WHAT: Immutable configuration describing each service line the agency
sells: label, default price, default billing plan, scope-of-work blocks
and the clause codes that apply to it.

WHY: The catalog is static business configuration. Building it once as a
frozen object and passing it to the clause resolver keeps resolution pure
and lets tests substitute a smaller catalog.

HOW: Frozen dataclasses holding tuples; `get_service_catalog()` builds the
default catalog once per process.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Optional, Tuple

from agency_portal.models.proposal import BillingPlanType, ServiceType


@dataclass(frozen=True)
class ScopeBlock:
    """A titled list of scope-of-work lines (deliverables, exclusions, milestones)."""

    title: str
    items: Tuple[str, ...]


@dataclass(frozen=True)
class ServiceTemplate:
    """Defaults and clause codes for one service type."""

    service_type: ServiceType
    label: str
    default_price_cents: int
    price_range_hint: str
    default_plan_type: BillingPlanType
    clause_codes: Tuple[str, ...]
    plan_parts: Tuple[int, ...] = ()
    scope_blocks: Tuple[ScopeBlock, ...] = ()


@dataclass(frozen=True)
class ServiceCatalog:
    """
    Immutable lookup of service templates plus the global clause codes.

    Global clauses apply to every proposal regardless of its services.
    """

    templates: Tuple[ServiceTemplate, ...]
    global_clause_codes: Tuple[str, ...]
    _by_type: Dict[str, ServiceTemplate] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # WHY: object.__setattr__ is the supported way to fill a derived field on a frozen dataclass
        object.__setattr__(
            self, "_by_type", {t.service_type.value: t for t in self.templates}
        )

    def get(self, service_type: str) -> Optional[ServiceTemplate]:
        """Template for a service type, or None for unknown types (including "other")."""
        key = service_type.value if isinstance(service_type, ServiceType) else str(service_type)
        return self._by_type.get(key)

    def label_for(self, service_type: str) -> str:
        template = self.get(service_type)
        if template is not None:
            return template.label
        key = service_type.value if isinstance(service_type, ServiceType) else str(service_type)
        return key.replace("_", " ").title()


GLOBAL_CLAUSE_CODES: Tuple[str, ...] = tuple(f"G{n:02d}" for n in range(1, 16))


def _codes(prefix: str, count: int) -> Tuple[str, ...]:
    return tuple(f"{prefix}{n:02d}" for n in range(1, count + 1))


def _build_default_templates() -> Tuple[ServiceTemplate, ...]:
    return (
        ServiceTemplate(
            service_type=ServiceType.WEBSITE,
            label="Website Development",
            default_price_cents=350000,
            price_range_hint="$2,500 to $8,000+",
            default_plan_type=BillingPlanType.SPLIT,
            plan_parts=(50, 50),
            scope_blocks=(
                ScopeBlock("Included Deliverables", (
                    "Custom design and build",
                    "Responsive layouts",
                    "CMS setup",
                    "Core pages",
                    "Performance optimization",
                    "Basic on-page SEO",
                    "Contact or lead form",
                    "Launch support",
                )),
                ScopeBlock("Exclusions", (
                    "Copywriting unless included",
                    "Hosting and domain fees",
                    "Ongoing maintenance unless included",
                    "Advanced SEO campaigns",
                )),
                ScopeBlock("Milestones", (
                    "Discovery and structure approval",
                    "Design approval",
                    "Development",
                    "QA and launch",
                )),
            ),
            clause_codes=_codes("W", 9),
        ),
        ServiceTemplate(
            service_type=ServiceType.LANDING_PAGE,
            label="Landing Page",
            default_price_cents=100000,
            price_range_hint="$750 to $1,500 per page",
            default_plan_type=BillingPlanType.FULL_UPFRONT,
            scope_blocks=(
                ScopeBlock("Included Deliverables", (
                    "Single page layout",
                    "Conversion-focused structure",
                    "CTA and form integration",
                    "Mobile optimization",
                    "Speed optimization",
                    "Analytics ready",
                )),
                ScopeBlock("Exclusions", (
                    "Multi-page builds",
                    "Complex backend logic",
                    "Ad spend management",
                )),
            ),
            clause_codes=_codes("L", 6),
        ),
        ServiceTemplate(
            service_type=ServiceType.WEB_APP,
            label="Web App Development",
            default_price_cents=800000,
            price_range_hint="Custom scoped",
            default_plan_type=BillingPlanType.SPLIT,
            plan_parts=(40, 30, 30),
            scope_blocks=(
                ScopeBlock("Included Deliverables", (
                    "Architecture planning",
                    "UI and UX design",
                    "Frontend development",
                    "Backend logic or integrations",
                    "Auth and user roles",
                    "Database setup",
                    "Staging and production deployment",
                )),
                ScopeBlock("Exclusions", (
                    "Ongoing feature expansion",
                    "Third-party fees",
                    "Compliance certifications unless included",
                )),
                ScopeBlock("Milestones", (
                    "Architecture and scope lock",
                    "Design approval",
                    "MVP build",
                    "Testing and deployment",
                )),
            ),
            clause_codes=_codes("A", 8),
        ),
        ServiceTemplate(
            service_type=ServiceType.BRAND_IDENTITY,
            label="Brand Identity",
            default_price_cents=85000,
            price_range_hint="$450 to $1,500",
            default_plan_type=BillingPlanType.FULL_UPFRONT,
            scope_blocks=(
                ScopeBlock("Included Deliverables", (
                    "Primary logo",
                    "Logo variations",
                    "Color palette",
                    "Typography system",
                    "Brand guidelines",
                    "File exports for web and print",
                )),
                ScopeBlock("Exclusions", (
                    "Trademark search unless included",
                    "Website design unless included",
                )),
            ),
            clause_codes=_codes("B", 7),
        ),
        ServiceTemplate(
            service_type=ServiceType.SEO,
            label="SEO Content and On-Page SEO",
            default_price_cents=55000,
            price_range_hint="$550 per page or post",
            default_plan_type=BillingPlanType.FULL_UPFRONT,
            scope_blocks=(
                ScopeBlock("Included Deliverables", (
                    "Keyword research",
                    "SEO content writing",
                    "Metadata and structure",
                    "Internal linking",
                    "Publishing support with access",
                )),
                ScopeBlock("Exclusions", (
                    "Ranking guarantees",
                    "Backlink campaigns unless included",
                )),
            ),
            clause_codes=_codes("S", 7),
        ),
        ServiceTemplate(
            service_type=ServiceType.GRAPHIC_DESIGN,
            label="Graphic Design",
            default_price_cents=25000,
            price_range_hint="$150 to $500 per asset",
            default_plan_type=BillingPlanType.FULL_UPFRONT,
            scope_blocks=(
                ScopeBlock("Included Deliverables", (
                    "Design assets per agreed count",
                    "Platform sizing",
                    "Exported web formats",
                )),
                ScopeBlock("Exclusions", (
                    "Source files unless included",
                    "Unlimited revisions",
                )),
            ),
            clause_codes=_codes("GFX", 5),
        ),
        ServiceTemplate(
            service_type=ServiceType.VIDEO_EDITING,
            label="Video Editing",
            default_price_cents=50000,
            price_range_hint="$250 to $1,000 per video",
            default_plan_type=BillingPlanType.FULL_UPFRONT,
            scope_blocks=(
                ScopeBlock("Included Deliverables", (
                    "Edit per provided footage",
                    "Basic motion overlays if included",
                    "Branding overlays",
                    "Platform exports",
                )),
                ScopeBlock("Exclusions", (
                    "Licensed music unless included",
                    "Filming and footage capture",
                )),
            ),
            clause_codes=_codes("V", 5),
        ),
        ServiceTemplate(
            service_type=ServiceType.RETAINER,
            label="Monthly Retainer",
            default_price_cents=100000,
            price_range_hint="Monthly billed in advance",
            default_plan_type=BillingPlanType.MONTHLY_RETAINER,
            scope_blocks=(
                ScopeBlock("Included Deliverables", (
                    "Monthly scope bucket",
                    "Priority support windows",
                    "Reporting if included",
                )),
                ScopeBlock("Exclusions", (
                    "Unused work rollover unless included",
                    "Unlimited requests",
                )),
            ),
            clause_codes=_codes("R", 5),
        ),
    )


@lru_cache(maxsize=1)
def get_service_catalog() -> ServiceCatalog:
    """
    Get the default service catalog.

    WHY: Built once per process; the catalog is immutable so sharing it
    across requests and the scheduler needs no locking.
    """
    return ServiceCatalog(
        templates=_build_default_templates(),
        global_clause_codes=GLOBAL_CLAUSE_CODES,
    )
