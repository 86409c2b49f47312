import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from field_impact.errors import SchemaFormatError

REFERENCE_TYPE = "reference"


def _optional_str(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise SchemaFormatError(f"'{key}' must be a string, got {type(value).__name__}")
    return value


def _required_str(data: Mapping[str, Any], key: str) -> str:
    value = _optional_str(data, key)
    if not value:
        raise SchemaFormatError(f"missing required attribute '{key}'")
    return value


@dataclass
class RawField:
    """One entry of a describe payload's ``fields`` list, validated."""

    name: str
    type: str
    reference_to: List[str] = field(default_factory=list)
    relationship_name: Optional[str] = None
    relationship_order: Optional[int] = None
    calculated_formula: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "RawField":
        if not isinstance(data, Mapping):
            raise SchemaFormatError(f"field entry must be a mapping, got {type(data).__name__}")

        reference_to = data.get("referenceTo") or []
        if not isinstance(reference_to, list) or not all(isinstance(ref, str) for ref in reference_to):
            raise SchemaFormatError("'referenceTo' must be a list of object names")

        order = data.get("relationshipOrder")
        # bool is an int subclass; True/False are not relationship slots
        if order is not None and (isinstance(order, bool) or not isinstance(order, int)):
            raise SchemaFormatError("'relationshipOrder' must be an integer")

        return cls(
            name=_required_str(data, "name"),
            type=_required_str(data, "type"),
            reference_to=list(reference_to),
            relationship_name=_optional_str(data, "relationshipName"),
            relationship_order=order,
            calculated_formula=_optional_str(data, "calculatedFormula"),
        )

    @property
    def is_reference(self) -> bool:
        return self.type == REFERENCE_TYPE and bool(self.reference_to)


@dataclass
class RawValidationRule:
    name: str
    error_condition_formula: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "RawValidationRule":
        if not isinstance(data, Mapping):
            raise SchemaFormatError(f"validation rule must be a mapping, got {type(data).__name__}")
        return cls(
            name=_required_str(data, "name"),
            error_condition_formula=_optional_str(data, "errorConditionFormula"),
        )


class DependencyKind(str, Enum):
    FIELD = "field"
    CROSS_OBJECT = "cross_object"


@dataclass(frozen=True)
class Dependency:
    kind: DependencyKind
    field: str
    object: Optional[str] = None

    @classmethod
    def on_field(cls, field_name: str) -> "Dependency":
        return cls(kind=DependencyKind.FIELD, field=field_name)

    @classmethod
    def cross_object(cls, object_name: str, field_name: str) -> "Dependency":
        return cls(kind=DependencyKind.CROSS_OBJECT, field=field_name, object=object_name)

    def to_dict(self) -> Dict[str, str]:
        data = {"type": self.kind.value, "field": self.field}
        if self.kind is DependencyKind.CROSS_OBJECT:
            data["object"] = self.object
        return data


@dataclass
class FieldMeta:
    type: str
    reference_to: List[str] = field(default_factory=list)
    relationship_name: Optional[str] = None
    relationship_order: Optional[int] = None
    formula: Optional[str] = None
    dependencies: List[Dependency] = field(default_factory=list)


@dataclass
class FormulaEntry:
    formula: str
    dependencies: List[Dependency] = field(default_factory=list)


@dataclass
class RelationshipRecord:
    """Structured cross-references of one object, replaced wholesale on reload."""

    fields: Dict[str, FieldMeta] = field(default_factory=dict)
    lookups: Dict[str, List[str]] = field(default_factory=dict)
    master_detail: Dict[str, List[str]] = field(default_factory=dict)
    formula_fields: Dict[str, FormulaEntry] = field(default_factory=dict)
    validation_rules: Dict[str, FormulaEntry] = field(default_factory=dict)


@dataclass
class UserCache:
    metadata_by_object: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    relationships: Dict[str, RelationshipRecord] = field(default_factory=dict)
    is_loading: bool = False
    last_load_time: Optional[float] = None
    refresh_task: Optional["asyncio.Task[None]"] = None
    # set once refresh_task has woken up and started its reload
    refresh_fired: bool = False


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass
class FormulaUsage:
    name: str
    formula: str


@dataclass
class LookupUsage:
    field: str
    references: List[str]


@dataclass
class UsageReport:
    field_name: str
    object_name: str
    formulas: List[FormulaUsage] = field(default_factory=list)
    validations: List[FormulaUsage] = field(default_factory=list)
    lookups: List[LookupUsage] = field(default_factory=list)
    # reserved: process automation and flow scanning are not implemented
    process_builder: List[Dict[str, Any]] = field(default_factory=list)
    flows: List[Dict[str, Any]] = field(default_factory=list)
    total_usage: int = 0
    risk_level: RiskLevel = RiskLevel.LOW

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": {"name": self.field_name, "object": self.object_name},
            "metadataElements": {
                "formulas": [{"name": f.name, "formula": f.formula} for f in self.formulas],
                "validations": [{"name": v.name, "formula": v.formula} for v in self.validations],
                "lookups": [{"field": l.field, "references": list(l.references)} for l in self.lookups],
                "processBuilder": list(self.process_builder),
                "flows": list(self.flows),
            },
            "summary": {"totalUsage": self.total_usage, "riskLevel": self.risk_level.value},
        }
