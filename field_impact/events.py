"""
Structured event log.

Every event is a flat dict ``{timestamp, type, message, ...context}``. Events
go to a stdlib logger and, when configured, to a write-only sink such as
``JsonLinesSink``. Sinks are observers: a failing sink is reported on the
logger and otherwise ignored.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from field_impact.models import RelationshipRecord

EventSink = Callable[[Dict[str, Any]], None]

log = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _describe_error(error: Optional[BaseException]) -> Optional[Dict[str, Any]]:
    if error is None:
        return None
    described: Dict[str, Any] = {"name": type(error).__name__, "message": str(error)}
    for attr in ("status_code", "error_code"):
        value = getattr(error, attr, None)
        if value is not None:
            described[attr] = value
    return described


class JsonLinesSink:
    """
    Append each event as one JSON document per line.

    With ``error_path`` set, ``error`` events go to that file instead, so
    failures can be read without the progress noise.
    """

    def __init__(self, path: str, error_path: Optional[str] = None):
        self.path = path
        self.error_path = error_path
        for target in (path, error_path):
            directory = os.path.dirname(target) if target else ""
            if directory:
                os.makedirs(directory, exist_ok=True)

    def __call__(self, event: Dict[str, Any]) -> None:
        target = self.path
        if self.error_path and event.get("type") == "error":
            target = self.error_path
        with open(target, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(event, ensure_ascii=False, default=str) + "\n")


class EventLog:
    def __init__(self, sink: Optional[EventSink] = None, logger: Optional[logging.Logger] = None):
        self.sink = sink
        self.logger = logger or log

    def _emit(self, event: Dict[str, Any]) -> Dict[str, Any]:
        if self.sink is None:
            return event
        try:
            self.sink(event)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("[events] sink failed: %s", exc)
        return event

    def log(self, message: str, level: int = logging.INFO, **context: Any) -> Dict[str, Any]:
        event = {"timestamp": _now_iso(), "type": "log", "message": message, **context}
        self.logger.log(level, message)
        return self._emit(event)

    def error(self, message: str, error: Optional[BaseException] = None, **context: Any) -> Dict[str, Any]:
        event = {
            "timestamp": _now_iso(),
            "type": "error",
            "message": message,
            "error": _describe_error(error),
            **context,
        }
        if error is not None:
            self.logger.error("%s: %s", message, error)
        else:
            self.logger.error(message)
        return self._emit(event)

    def metadata_progress(self, object_name: str, current: int, total: int, **extra: Any) -> Dict[str, Any]:
        percentage = round(current / total * 100, 1) if total else 100.0
        return self.log(
            f"Processing {object_name} ({current}/{total})",
            level=logging.DEBUG,
            component="metadata-service",
            progress={"object": object_name, "current": current, "total": total, "percentage": percentage},
            **extra,
        )

    def relationships(self, object_name: str, record: RelationshipRecord) -> Dict[str, Any]:
        return self.log(
            f"Found relationships for {object_name}",
            level=logging.DEBUG,
            component="metadata-service",
            object=object_name,
            relationships={
                "lookups": dict(record.lookups),
                "masterDetail": dict(record.master_detail),
                "formulaFields": {name: entry.formula for name, entry in record.formula_fields.items()},
                "validationRules": {name: entry.formula for name, entry in record.validation_rules.items()},
            },
        )
