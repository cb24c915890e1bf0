"""Output writers for compressed text and JSON reports."""
from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

from .models import ChainOfSpreadsheetResponse, CompressionResult


class OutputWriter:
    def __init__(self, output_dir: str, report_dir: str) -> None:
        self.output_path = Path(output_dir)
        self.report_path = Path(report_dir)
        self.output_path.mkdir(parents=True, exist_ok=True)
        self.report_path.mkdir(parents=True, exist_ok=True)

    def write_compressed(self, stem: str, result: CompressionResult) -> Path:
        file_path = self.output_path / f"{stem}.compressed.txt"
        with open(file_path, "w", encoding="utf-8") as handle:
            handle.write(result.compressed_text)
        return file_path

    def write_compression_report(self, source: str, result: CompressionResult) -> Path:
        payload = {
            "source": source,
            "strategy": result.strategy,
            "success": result.success,
            "error": result.error,
            "original_token_count": result.original_token_count,
            "compressed_token_count": result.compressed_token_count,
            "compression_ratio": result.compression_ratio,
            "step_timings": result.step_timings,
            "warnings": result.warnings,
            "statistics": asdict(result.statistics),
            "artifacts": [{"name": a.name, "media_type": a.media_type} for a in result.artifacts],
        }
        return self._write_json("compression_report.json", payload)

    def write_qa_report(self, source: str, question: str, response: ChainOfSpreadsheetResponse) -> Path:
        payload = {"source": source, "question": question, "response": asdict(response)}
        return self._write_json("qa_report.json", payload)

    def _write_json(self, name: str, payload: Any) -> Path:
        report_file = self.report_path / name
        with open(report_file, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, default=str)
        return report_file
