import logging
import re
from typing import Optional

from field_impact.cache import MetadataCacheManager
from field_impact.errors import ObjectNotFoundError
from field_impact.events import EventLog
from field_impact.models import FormulaUsage, LookupUsage, RiskLevel, UsageReport

log = logging.getLogger(__name__)

COMPONENT = "impact-analyzer"

MEDIUM_RISK_MAX_USAGE = 3


def is_field_used_in_formula(field_name: str, formula: Optional[str]) -> bool:
    """Bare-token match or ``<relationship>.<field>`` match, on word boundaries."""
    if not formula:
        return False
    escaped = re.escape(field_name)
    if re.search(rf"\b{escaped}\b", formula):
        return True
    return re.search(rf"\b\w+\.{escaped}\b", formula) is not None


def determine_risk_level(total_usage: int) -> RiskLevel:
    if total_usage == 0:
        return RiskLevel.LOW
    if total_usage <= MEDIUM_RISK_MAX_USAGE:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


class ImpactAnalyzer:
    def __init__(self, cache: MetadataCacheManager, events: Optional[EventLog] = None):
        self.cache = cache
        self.events = events or cache.events

    async def analyze_field_usage(self, user_id: str, object_name: str, field_name: str) -> UsageReport:
        """
        Report where ``field_name`` is referenced on ``object_name``.

        Formula and validation matching is lexical, so the report is an
        estimate. Raises ObjectNotFoundError when the object has no
        relationship record.
        """
        try:
            relationships = await self.cache.get_object_relationships(user_id, object_name)
            if relationships is None:
                raise ObjectNotFoundError(object_name)

            report = UsageReport(field_name=field_name, object_name=object_name)

            for name, entry in relationships.formula_fields.items():
                if is_field_used_in_formula(field_name, entry.formula):
                    report.formulas.append(FormulaUsage(name=name, formula=entry.formula))

            for name, entry in relationships.validation_rules.items():
                if is_field_used_in_formula(field_name, entry.formula):
                    report.validations.append(FormulaUsage(name=name, formula=entry.formula))

            for lookup_field, reference_to in relationships.lookups.items():
                if field_name in reference_to:
                    report.lookups.append(LookupUsage(field=lookup_field, references=list(reference_to)))

            report.total_usage = (
                len(report.formulas)
                + len(report.validations)
                + len(report.lookups)
                + len(report.process_builder)
                + len(report.flows)
            )
            report.risk_level = determine_risk_level(report.total_usage)
        except Exception as exc:
            self.events.error(
                f"Failed to analyze field usage for {object_name}.{field_name}", exc, component=COMPONENT
            )
            raise

        self.events.log(
            f"Field usage analysis completed for {object_name}.{field_name}",
            component=COMPONENT,
            usage={"totalUsage": report.total_usage, "riskLevel": report.risk_level.value},
            elements={
                "formulas": len(report.formulas),
                "validations": len(report.validations),
                "lookups": len(report.lookups),
            },
        )
        return report
