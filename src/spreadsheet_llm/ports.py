"""Collaborator interfaces consumed by the compression and QA layers."""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, Optional, Protocol

from .models import TableDetectionResult, WorkbookContext


logger = logging.getLogger(__name__)


@dataclass
class LoadOptions:
    include_styles: bool = True
    include_formulas: bool = True
    memory_optimization_level: str = "balanced"


class WorkbookLoader(Protocol):
    def load(self, path: str, options: Optional[LoadOptions] = None) -> WorkbookContext:
        ...


class ChatCompletion(Protocol):
    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.1,
        max_tokens: int = 500,
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        ...


class TableDetector(Protocol):
    async def detect(self, compressed_text: str, hint: Optional[str] = None) -> TableDetectionResult:
        ...


class CostLedger(Protocol):
    def record(self, action: str, cost: float, metadata: Optional[Dict[str, Any]] = None) -> None:
        ...


class ActivitySink(Protocol):
    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class LoggingCostLedger:
    def record(self, action: str, cost: float, metadata: Optional[Dict[str, Any]] = None) -> None:
        logger.info("cost action=%s cost=%.6f metadata=%s", action, cost, metadata or {})


class LoggingActivitySink:
    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info("activity event=%s payload=%s", event, payload)
