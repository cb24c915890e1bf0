"""Configuration for compression strategies, QA cascade and adapters."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
import json

from .errors import ConfigurationError


@dataclass
class AnchorDetectionOptions:
    min_heterogeneity_score: float = 0.6
    consider_styles: bool = True
    consider_number_formats: bool = True
    detect_multi_level_headers: bool = True
    max_header_depth: int = 5


@dataclass
class SkeletonExtractionOptions:
    preserve_nearby_non_empty: bool = True
    preserve_formulas: bool = True
    preserve_formatted_cells: bool = True
    min_compression_ratio: float = 0.5


@dataclass
class InvertedIndexOptions:
    optimize_ranges: bool = True
    include_formats: bool = True
    range_threshold: int = 3


@dataclass
class FormatAggregationOptions:
    enable_type_recognition: bool = True
    type_recognizers: List[Any] = field(default_factory=list)
    min_group_size: int = 2
    match_formats: bool = True


@dataclass
class SerializationOptions:
    include_number_formats: bool = True
    include_formulas: bool = True
    include_styles: bool = False
    cell_separator: str = "|"
    max_cells: Optional[int] = None


@dataclass
class StrategyConfig:
    name: str
    detect_structure: bool = True
    k: int = 2
    anchors: AnchorDetectionOptions = field(default_factory=AnchorDetectionOptions)
    skeleton: SkeletonExtractionOptions = field(default_factory=SkeletonExtractionOptions)
    cap_cells_to_budget: bool = False
    minimal_serialization: bool = False
    low_ratio_warning: Optional[float] = None
    warning: Optional[str] = None


@dataclass
class CostModel:
    input_cost_per_1k: float = 0.01
    output_cost_per_1k: float = 0.03

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            input_tokens / 1000.0 * self.input_cost_per_1k
            + output_tokens / 1000.0 * self.output_cost_per_1k
        )


@dataclass
class QaSettings:
    default_strategy: str = "balanced"
    include_trace: bool = True
    answer_temperature: float = 0.1
    answer_max_tokens: int = 500
    detection_temperature: float = 0.1
    detection_max_tokens: int = 2000
    system_prompt: str = (
        "You are a helpful assistant that answers questions about spreadsheet "
        "data accurately and concisely."
    )


@dataclass
class LlmSettings:
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None
    api_key_env: str = "OPENAI_API_KEY"
    max_retries: int = 3
    timeout: float = 60.0


@dataclass
class ProgressSettings:
    enabled: bool = True
    interval: int = 10


@dataclass
class CompressorConfig:
    strategies: List[StrategyConfig] = field(default_factory=list)
    inverted_index: InvertedIndexOptions = field(default_factory=InvertedIndexOptions)
    aggregation: FormatAggregationOptions = field(default_factory=FormatAggregationOptions)
    serialization: SerializationOptions = field(default_factory=SerializationOptions)
    costs: CostModel = field(default_factory=CostModel)
    qa: QaSettings = field(default_factory=QaSettings)
    llm: LlmSettings = field(default_factory=LlmSettings)
    progress: ProgressSettings = field(default_factory=ProgressSettings)
    default_token_limit: Optional[int] = None
    max_workers: int = 1

    def strategy(self, name: str) -> StrategyConfig:
        key = (name or "").strip().lower()
        for strategy in self.strategies:
            if strategy.name == key:
                return strategy
        known = ", ".join(s.name for s in self.strategies)
        raise ConfigurationError(f"Unsupported compression strategy '{name}' (known: {known})")

    @staticmethod
    def default() -> "CompressorConfig":
        strategies = [
            StrategyConfig(
                name="none",
                detect_structure=False,
                k=0,
            ),
            StrategyConfig(
                name="balanced",
                k=2,
                anchors=AnchorDetectionOptions(
                    min_heterogeneity_score=0.6,
                    consider_styles=True,
                    consider_number_formats=True,
                    detect_multi_level_headers=True,
                ),
                skeleton=SkeletonExtractionOptions(
                    preserve_nearby_non_empty=True,
                    preserve_formulas=True,
                    preserve_formatted_cells=True,
                    min_compression_ratio=0.5,
                ),
                low_ratio_warning=0.3,
            ),
            StrategyConfig(
                name="aggressive",
                k=0,
                anchors=AnchorDetectionOptions(
                    min_heterogeneity_score=0.8,
                    consider_styles=False,
                    consider_number_formats=False,
                    detect_multi_level_headers=False,
                ),
                skeleton=SkeletonExtractionOptions(
                    preserve_nearby_non_empty=False,
                    preserve_formulas=False,
                    preserve_formatted_cells=False,
                    min_compression_ratio=0.8,
                ),
                cap_cells_to_budget=True,
                minimal_serialization=True,
                warning="Aggressive compression applied - some context may be lost",
            ),
        ]
        return CompressorConfig(strategies=strategies)


def _merge_dict(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge_dict(result[key], value)
        else:
            result[key] = value
    return result


def _strategy_from_dict(raw: Dict[str, Any]) -> StrategyConfig:
    if "name" not in raw:
        raise ConfigurationError("Strategy entries require a 'name'")
    return StrategyConfig(
        name=str(raw["name"]).strip().lower(),
        detect_structure=raw.get("detect_structure", True),
        k=int(raw.get("k", 2)),
        anchors=AnchorDetectionOptions(**raw.get("anchors", {})),
        skeleton=SkeletonExtractionOptions(**raw.get("skeleton", {})),
        cap_cells_to_budget=raw.get("cap_cells_to_budget", False),
        minimal_serialization=raw.get("minimal_serialization", False),
        low_ratio_warning=raw.get("low_ratio_warning"),
        warning=raw.get("warning"),
    )


def load_config(path: Optional[str]) -> CompressorConfig:
    if not path:
        return CompressorConfig.default()
    with open(path, "r", encoding="utf-8") as handle:
        raw = json.load(handle)
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a JSON object")

    defaults = CompressorConfig.default()
    merged = _merge_dict(
        {
            "strategies": [asdict(s) for s in defaults.strategies],
            "inverted_index": asdict(defaults.inverted_index),
            "aggregation": asdict(defaults.aggregation),
            "serialization": asdict(defaults.serialization),
            "costs": asdict(defaults.costs),
            "qa": asdict(defaults.qa),
            "llm": asdict(defaults.llm),
            "progress": asdict(defaults.progress),
            "default_token_limit": defaults.default_token_limit,
            "max_workers": defaults.max_workers,
        },
        raw,
    )

    try:
        return CompressorConfig(
            strategies=[_strategy_from_dict(s) for s in merged.get("strategies", [])],
            inverted_index=InvertedIndexOptions(**merged.get("inverted_index", {})),
            aggregation=FormatAggregationOptions(**merged.get("aggregation", {})),
            serialization=SerializationOptions(**merged.get("serialization", {})),
            costs=CostModel(**merged.get("costs", {})),
            qa=QaSettings(**merged.get("qa", {})),
            llm=LlmSettings(**merged.get("llm", {})),
            progress=ProgressSettings(**merged.get("progress", {})),
            default_token_limit=merged.get("default_token_limit"),
            max_workers=int(merged.get("max_workers", defaults.max_workers)),
        )
    except TypeError as exc:
        raise ConfigurationError(f"Invalid config file {path}: {exc}") from exc
