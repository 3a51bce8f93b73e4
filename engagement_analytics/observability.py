import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


@dataclass
class MetricRecord:
    name: str
    value: float
    tags: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WarningRecord:
    kind: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)


class MetricsSink(ABC):
    """Explicit observability interface handed to the analytics functions.

    Analytics code never logs to an ambient channel for auditing purposes;
    it reports derived values and data-quality warnings to the sink it was
    given. Pick LoggingSink for production, RecordingSink for tests.
    """

    @abstractmethod
    def record_metric(self, name: str, value: float, **tags: Any) -> None:
        pass

    @abstractmethod
    def record_warning(self, kind: str, message: str, **context: Any) -> None:
        pass


class NullSink(MetricsSink):
    """Discards everything"""

    def record_metric(self, name: str, value: float, **tags: Any) -> None:
        pass

    def record_warning(self, kind: str, message: str, **context: Any) -> None:
        pass


class LoggingSink(MetricsSink):
    """Writes metrics and warnings through the logging module"""

    def __init__(self, logger_name: str = "engagement_analytics", metric_level: int = logging.INFO):
        self.logger = logging.getLogger(logger_name)
        self.metric_level = metric_level

    def record_metric(self, name: str, value: float, **tags: Any) -> None:
        self.logger.log(
            self.metric_level,
            f"metric {name}={value}",
            extra={"metric_name": name, "metric_value": value, "metric_tags": tags}
        )

    def record_warning(self, kind: str, message: str, **context: Any) -> None:
        self.logger.warning(
            f"{kind}: {message}",
            extra={"warning_kind": kind, "warning_context": context}
        )


class RecordingSink(MetricsSink):
    """Keeps everything in memory so callers can inspect what was reported"""

    def __init__(self):
        self.metrics: List[MetricRecord] = []
        self.warnings: List[WarningRecord] = []

    def record_metric(self, name: str, value: float, **tags: Any) -> None:
        self.metrics.append(MetricRecord(name, value, dict(tags)))

    def record_warning(self, kind: str, message: str, **context: Any) -> None:
        self.warnings.append(WarningRecord(kind, message, dict(context)))

    def metric(self, name: str) -> float:
        for record in reversed(self.metrics):
            if record.name == name:
                return record.value
        raise KeyError(name)

    def warning_kinds(self) -> List[str]:
        return [w.kind for w in self.warnings]


def resolve_sink(sink: Optional[MetricsSink]) -> MetricsSink:
    return sink if sink is not None else NullSink()
