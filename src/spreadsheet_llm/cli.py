"""Command-line interface for spreadsheet compression and QA."""
from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from .chain import ChainOfSpreadsheet
from .config import CompressorConfig, load_config
from .errors import SpreadsheetLLMError
from .llm import OpenAIChatCompletion
from .loaders.openpyxl_loader import OpenpyxlWorkbookLoader
from .output import OutputWriter
from .pipeline import WorkbookCompressor
from .ports import LoadOptions, LoggingActivitySink, LoggingCostLedger
from .table_detection import LlmTableDetector


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Spreadsheet compression and Chain-of-Spreadsheet QA")
    parser.add_argument("--config", default=None, help="Path to config JSON")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    compress = subparsers.add_parser("compress", help="Compress a workbook into LLM-ready text")
    compress.add_argument("--input", required=True, help="Path to input .xlsx workbook")
    compress.add_argument("--strategy", default="balanced", help="none, balanced or aggressive")
    compress.add_argument("--token-limit", type=int, default=None, help="Target token budget")
    compress.add_argument("--output", default="outputs", help="Output directory for compressed text")
    compress.add_argument("--report", default="reports", help="Output directory for reports")
    compress.add_argument("--no-formatting", action="store_true", help="Ignore number formats and styles")
    compress.add_argument("--no-formulas", action="store_true", help="Drop formulas from the output")

    ask = subparsers.add_parser("ask", help="Answer a question about a workbook")
    ask.add_argument("--input", required=True, help="Path to input .xlsx workbook")
    ask.add_argument("--question", required=True, help="Question to answer")
    ask.add_argument("--strategy", default=None, help="Compression strategy used for table detection")
    ask.add_argument("--model", default=None, help="Chat model name")
    ask.add_argument("--no-trace", action="store_true", help="Skip the reasoning trace")
    ask.add_argument("--report", default="reports", help="Output directory for reports")
    return parser


def _progress(config: CompressorConfig, message: str) -> None:
    if config.progress.enabled:
        print(f"[progress] {message}", flush=True)


def run_compress(args: argparse.Namespace, config: CompressorConfig) -> None:
    input_path = Path(args.input)
    loader = OpenpyxlWorkbookLoader()
    options = LoadOptions(include_styles=not args.no_formatting, include_formulas=not args.no_formulas)
    workbook = loader.load(str(input_path), options)
    stats = workbook.statistics
    _progress(config, f"loaded {len(workbook.worksheets)} sheets, {stats.non_empty_cells} non-empty cells")
    interval = max(1, config.progress.interval)
    total = len(workbook.worksheets)
    for number, sheet in enumerate(workbook.worksheets, start=1):
        if number % interval == 0 or number == total:
            _progress(config, f"sheet {number}/{total} {sheet.name}: {sheet.statistics.non_empty_cells} cells")

    compressor = WorkbookCompressor(config)
    result = compressor.compress(
        workbook,
        strategy=args.strategy,
        target_token_limit=args.token_limit,
        include_formatting=not args.no_formatting,
        include_formulas=not args.no_formulas,
    )
    if not result.success:
        raise SystemExit(f"Compression failed: {result.error}")

    output = OutputWriter(args.output, args.report)
    text_path = output.write_compressed(input_path.stem, result)
    output.write_compression_report(str(input_path), result)
    _progress(
        config,
        f"{result.strategy}: {result.original_token_count} -> {result.compressed_token_count} tokens "
        f"(ratio {result.compression_ratio:.2f})",
    )
    for warning in result.warnings:
        print(f"[warning] {warning}", flush=True)
    if config.progress.enabled:
        print(f"[done] wrote {text_path}", flush=True)


def run_ask(args: argparse.Namespace, config: CompressorConfig) -> None:
    if args.model:
        config.llm.model = args.model
    chat = OpenAIChatCompletion(config.llm)
    ledger = LoggingCostLedger()
    chain = ChainOfSpreadsheet(
        loader=OpenpyxlWorkbookLoader(),
        detector=LlmTableDetector(chat, config.qa, config.costs, ledger),
        chat=chat,
        compressor=WorkbookCompressor(config),
        cost_ledger=ledger,
        activity_sink=LoggingActivitySink(),
        settings=config.qa,
        cost_model=config.costs,
    )
    _progress(config, f"asking {Path(args.input).name}: {args.question}")
    response = asyncio.run(
        chain.ask(
            args.input,
            args.question,
            strategy=args.strategy,
            include_trace=not args.no_trace,
        )
    )
    output = OutputWriter(args.report, args.report)
    output.write_qa_report(args.input, args.question, response)
    if not response.success:
        raise SystemExit(f"Question answering failed: {response.error}")
    print(response.answer, flush=True)
    _progress(config, f"table {response.detected_table}, cost ${response.total_cost:.4f}")


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input workbook not found: {input_path}")

    try:
        config = load_config(args.config)
        if args.command == "compress":
            run_compress(args, config)
        else:
            run_ask(args, config)
    except SpreadsheetLLMError as exc:
        raise SystemExit(str(exc)) from exc


if __name__ == "__main__":
    main()
