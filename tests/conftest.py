import asyncio
from typing import Any, Dict, List, Optional

import pytest

from field_impact.cache import MetadataCacheManager
from field_impact.errors import SchemaGatewayError
from field_impact.events import EventLog
from field_impact.gateway import StaticTokenProvider


ACCOUNT_SCHEMA: Dict[str, Any] = {
    "name": "Account",
    "fields": [
        {"name": "Id", "type": "id"},
        {"name": "Industry", "type": "picklist"},
        {
            "name": "ParentId",
            "type": "reference",
            "referenceTo": ["Account"],
            "relationshipName": "Parent",
        },
        {
            "name": "OwnerId",
            "type": "reference",
            "referenceTo": ["User", "Industry"],
            "relationshipName": "Owner",
            "relationshipOrder": 1,
        },
        {
            "name": "RiskScore__c",
            "type": "double",
            "calculatedFormula": "IF(Industry = 'Tech', 1, 0)",
        },
        {
            "name": "ParentIndustry__c",
            "type": "string",
            "calculatedFormula": "Parent.Industry & Segment__c",
        },
    ],
    "validationRules": [
        {"name": "Industry_Required", "errorConditionFormula": "ISBLANK(TEXT(Industry))"},
        {"name": "Rating_Check", "errorConditionFormula": "Rating__c > 5"},
    ],
}

CONTACT_SCHEMA: Dict[str, Any] = {
    "name": "Contact",
    "fields": [
        {
            "name": "AccountId",
            "type": "reference",
            "referenceTo": ["Account"],
            "relationshipName": "Account",
            "relationshipOrder": 0,
        },
        {
            "name": "AccountIndustry__c",
            "type": "string",
            "calculatedFormula": "Account.Industry",
        },
    ],
    "validationRules": [],
}


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    """In-memory schema source that counts calls and can block or fail."""

    def __init__(self, schemas: Dict[str, Any]):
        self.schemas = dict(schemas)
        self.list_calls = 0
        self.schema_calls: List[str] = []
        self.fail_objects: set = set()
        self.fail_list: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        # blocks only the next list call, then clears itself
        self.next_list_gate: Optional[asyncio.Event] = None
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_object_list(self) -> List[str]:
        self.list_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.next_list_gate is not None:
            gate, self.next_list_gate = self.next_list_gate, None
            await gate.wait()
        if self.fail_list is not None:
            raise self.fail_list
        return list(self.schemas)

    async def fetch_object_schema(self, object_name: str) -> Dict[str, Any]:
        self.schema_calls.append(object_name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if object_name in self.fail_objects:
                raise SchemaGatewayError(500, f"describe failed for {object_name}")
            return self.schemas[object_name]
        finally:
            self.in_flight -= 1


class RecordingSink:
    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def __call__(self, event: Dict[str, Any]) -> None:
        self.events.append(event)

    def of_type(self, kind: str) -> List[Dict[str, Any]]:
        return [event for event in self.events if event["type"] == kind]


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway({"Account": ACCOUNT_SCHEMA, "Contact": CONTACT_SCHEMA})


@pytest.fixture
def tokens() -> StaticTokenProvider:
    return StaticTokenProvider({"alice": "token-a", "bob": "token-b"})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def manager(gateway, tokens, clock, sink) -> MetadataCacheManager:
    return MetadataCacheManager(
        tokens,
        lambda user_id, token: gateway,
        ttl_seconds=100,
        batch_size=5,
        events=EventLog(sink=sink),
        clock=clock,
    )
