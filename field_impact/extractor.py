"""
Relationship extraction from raw describe payloads.

Formula dependencies are found by a lexical approximation: two regex token
shapes, no grammar. The result is non-exhaustive. It can report identifiers
that only look like field references and it misses references built inside
function calls or strings. Good enough to estimate impact, not to prove the
absence of a dependency.
"""

import logging
import re
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from field_impact.errors import SchemaFormatError
from field_impact.models import (
    Dependency,
    FieldMeta,
    FormulaEntry,
    RawField,
    RawValidationRule,
    RelationshipRecord,
)

log = logging.getLogger(__name__)

# custom-field suffix token, or Object.Field token
FORMULA_REF_PATTERN = re.compile(r"\b[a-zA-Z_]+__c\b|\b[a-zA-Z_]+\.[a-zA-Z_]+\b")

MASTER_DETAIL_ORDER = 0


def parse_formula_dependencies(formula: Optional[str]) -> List[Dependency]:
    if not formula:
        return []
    dependencies: List[Dependency] = []
    for match in FORMULA_REF_PATTERN.finditer(formula):
        token = match.group(0)
        if "." in token:
            object_name, field_name = token.split(".", 1)
            dependencies.append(Dependency.cross_object(object_name, field_name))
        else:
            dependencies.append(Dependency.on_field(token))
    return dependencies


def _is_master_detail(raw: RawField) -> bool:
    # Approximation: the first relationship slot is treated as the master.
    # The platform's real criteria are richer; expect misclassifications.
    return raw.relationship_order == MASTER_DETAIL_ORDER


def _add_field(record: RelationshipRecord, raw: RawField) -> None:
    dependencies = parse_formula_dependencies(raw.calculated_formula)
    record.fields[raw.name] = FieldMeta(
        type=raw.type,
        reference_to=list(raw.reference_to),
        relationship_name=raw.relationship_name,
        relationship_order=raw.relationship_order,
        formula=raw.calculated_formula,
        dependencies=dependencies,
    )

    if raw.is_reference:
        if _is_master_detail(raw):
            record.master_detail[raw.name] = list(raw.reference_to)
        else:
            record.lookups[raw.name] = list(raw.reference_to)

    if raw.calculated_formula:
        record.formula_fields[raw.name] = FormulaEntry(
            formula=raw.calculated_formula,
            dependencies=list(dependencies),
        )


def _add_validation_rule(record: RelationshipRecord, rule: RawValidationRule, object_name: str) -> None:
    if not rule.error_condition_formula:
        log.debug("[extract] object=%s rule=%s has no error condition, skipped", object_name, rule.name)
        return
    record.validation_rules[rule.name] = FormulaEntry(
        formula=rule.error_condition_formula,
        dependencies=parse_formula_dependencies(rule.error_condition_formula),
    )


def _entry_list(raw_schema: Mapping, key: str) -> List[Any]:
    entries = raw_schema.get(key)
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise SchemaFormatError(f"'{key}' must be a list, got {type(entries).__name__}")
    return entries


def _entry_name(entry: Any) -> str:
    if isinstance(entry, Mapping):
        return str(entry.get("name") or "<unnamed>")
    return "<invalid>"


def extract_relationships(object_name: str, raw_schema: Any) -> Optional[RelationshipRecord]:
    """
    Build the RelationshipRecord of one object.

    Malformed fields and validation rules are logged and left out. Returns
    None when the payload as a whole cannot be processed, so the caller can
    move on to the next object.
    """
    try:
        if not isinstance(raw_schema, Mapping):
            raise SchemaFormatError(f"describe payload must be a mapping, got {type(raw_schema).__name__}")
        fields = _entry_list(raw_schema, "fields")
        rules = _entry_list(raw_schema, "validationRules")

        record = RelationshipRecord()
        for entry in fields:
            try:
                _add_field(record, RawField.from_dict(entry))
            except Exception as exc:  # noqa: BLE001
                log.warning("[extract] object=%s field=%s skipped: %s", object_name, _entry_name(entry), exc)

        for entry in rules:
            try:
                _add_validation_rule(record, RawValidationRule.from_dict(entry), object_name)
            except Exception as exc:  # noqa: BLE001
                log.warning("[extract] object=%s rule=%s skipped: %s", object_name, _entry_name(entry), exc)
    except Exception as exc:  # noqa: BLE001
        log.error("[extract] object=%s failed: %s", object_name, exc)
        return None

    log.debug(
        "[extract] object=%s fields=%d lookups=%d master_detail=%d formulas=%d rules=%d",
        object_name,
        len(record.fields),
        len(record.lookups),
        len(record.master_detail),
        len(record.formula_fields),
        len(record.validation_rules),
    )
    return record


def summarize_relationships(record: RelationshipRecord) -> Dict[str, int]:
    return {
        "lookups": len(record.lookups),
        "masterDetail": len(record.master_detail),
        "formulaFields": len(record.formula_fields),
        "validationRules": len(record.validation_rules),
    }
