"""Encoding steps that turn the current workbook into compressed text."""
from __future__ import annotations

import json
from typing import Optional

from ..aggregation import FormatAwareAggregator
from ..config import FormatAggregationOptions, InvertedIndexOptions, SerializationOptions
from ..inverted_index import InvertedIndexTranslator
from ..serializer import VanillaSerializer
from .base import PipelineContext, PipelineStep


class InvertedIndexStep(PipelineStep):
    name = "inverted_index"

    def __init__(self, options: Optional[InvertedIndexOptions] = None) -> None:
        self.options = options or InvertedIndexOptions()
        self.translator = InvertedIndexTranslator()

    def run(self, context: PipelineContext) -> None:
        blocks = []
        for worksheet in context.current_workbook().worksheets:
            index = self.translator.translate(worksheet, self.options)
            context.inverted_index[worksheet.name] = index
            blocks.append(f"## Sheet: {worksheet.name}\n{self.translator.render(index)}")
        context.compressed_text = "\n\n".join(blocks)
        context.add_artifact(
            "inverted_index",
            "application/json",
            json.dumps(context.inverted_index, ensure_ascii=False),
        )


class FormatAggregationStep(PipelineStep):
    name = "format_aggregation"

    def __init__(self, options: Optional[FormatAggregationOptions] = None) -> None:
        self.options = options or FormatAggregationOptions()
        self.aggregator = FormatAwareAggregator()

    def run(self, context: PipelineContext) -> None:
        blocks = []
        aggregated_sheets = []
        for worksheet in context.current_workbook().worksheets:
            aggregated = self.aggregator.aggregate(worksheet, self.options)
            aggregated_sheets.append(aggregated)
            lines = [f"## Sheet: {worksheet.name}"]
            lines.extend(self.aggregator.render(aggregated) or ["(empty worksheet)"])
            blocks.append("\n".join(lines))
        context.aggregation = aggregated_sheets
        context.compressed_text = "\n\n".join(blocks)
        summary = {
            sheet.name: {
                "regions": len(sheet.regions),
                "literal_cells": len(sheet.literal_cells),
                "compression_ratio": round(sheet.compression_ratio, 4),
            }
            for sheet in aggregated_sheets
        }
        context.add_artifact("format_aggregation", "application/json", json.dumps(summary))


class VanillaSerializationStep(PipelineStep):
    name = "vanilla_serialization"

    def __init__(self, options: Optional[SerializationOptions] = None) -> None:
        self.options = options or SerializationOptions()
        self.serializer = VanillaSerializer()

    def run(self, context: PipelineContext) -> None:
        context.compressed_text = self.serializer.serialize(context.current_workbook(), self.options)
