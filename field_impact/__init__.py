from field_impact.cache import MetadataCacheManager
from field_impact.errors import (
    AlreadyLoadingError,
    AuthError,
    FieldImpactError,
    ObjectNotFoundError,
    SchemaFormatError,
    SchemaGatewayError,
)
from field_impact.events import EventLog, JsonLinesSink
from field_impact.extractor import extract_relationships, parse_formula_dependencies
from field_impact.gateway import SalesforceSchemaGateway, StaticTokenProvider, salesforce_gateway_factory
from field_impact.impact import ImpactAnalyzer
from field_impact.models import Dependency, DependencyKind, RelationshipRecord, RiskLevel, UsageReport
from field_impact.services import Services, build_services

__version__ = "1.0.0"
