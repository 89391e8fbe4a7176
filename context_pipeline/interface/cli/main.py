"""CLI: assemble and print the context bundle for one question."""

import argparse
import asyncio
import json
from pathlib import Path

from context_pipeline.application.dto.pipeline_dto import PipelineRequest
from context_pipeline.application.use_cases.assemble_context import PipelineOrchestrator
from context_pipeline.config.composition import build_orchestrator
from context_pipeline.config.logging import setup_logging
from context_pipeline.config.settings import AppSettings
from context_pipeline.domain.errors import ContextMissingError
from context_pipeline.domain.models import ContextBundle, Query, Turn
from context_pipeline.domain.types import Result
from context_pipeline.domain.value_objects import PRESETS


def load_history(path: str | None) -> tuple[Turn, ...]:
    """Read ``[{"role": "user"|"assistant", "content": ...}, ...]`` from a JSON file."""
    if not path:
        return ()
    records = json.loads(Path(path).read_text(encoding="utf-8"))
    return tuple(
        Turn(
            role=r["role"],
            text=r.get("content", r.get("text", "")),
            timestamp=r.get("timestamp"),
        )
        for r in records
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="context-pipeline", description="Assemble grounded context for a question."
    )
    parser.add_argument("--question", required=True)
    parser.add_argument("--history-file", help="JSON list of prior turns")
    parser.add_argument("--mode", choices=sorted(PRESETS), help="Performance preset")
    parser.add_argument("--deadline", type=float, help="Wall-time budget in seconds")
    parser.add_argument(
        "--fast", action="store_true", help="Heuristic rerank/compress only (no judge calls)"
    )
    parser.add_argument("--k", type=int, help="Semantic retrieval count")
    parser.add_argument("--threshold", type=float, help="Semantic similarity threshold")
    parser.add_argument("--log-level", help="Overrides LOG_LEVEL")
    return parser


async def assemble(
    orchestrator: PipelineOrchestrator, req: PipelineRequest
) -> Result[ContextBundle, ContextMissingError]:
    """Run one request, then release the orchestrator's connections."""
    try:
        return await orchestrator.run(req)
    finally:
        await orchestrator.aclose()


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = AppSettings()
    setup_logging(args.log_level or settings.log_level)

    req = PipelineRequest(
        query=Query(text=args.question, history=load_history(args.history_file)),
        mode=args.mode,
        retrieval_count=args.k,
        similarity_threshold=args.threshold,
        heuristics_only=args.fast,
        deadline_s=args.deadline if args.deadline is not None else settings.deadline_s,
    )
    orchestrator = build_orchestrator(settings)
    result = asyncio.run(assemble(orchestrator, req))

    if result.ok and result.value is not None:
        bundle = result.value
        analysis = bundle.analysis
        print("\n" + "=" * 80)
        print(
            f"CONTEXT ({bundle.total_chunks} chunks, entity_lock={bundle.used_entity_lock}, "
            f"mode={analysis.mode}, priority={analysis.priority})"
        )
        print("=" * 80)
        print(bundle.render() or "(no context found)")
        if analysis.degraded_stages:
            print("\n" + "=" * 80)
            print("DEGRADED STAGES: " + ", ".join(analysis.degraded_stages))
            print("=" * 80)
    elif result.error is not None:
        err = result.error
        print(f"\n[ERROR] {type(err).__name__}: {err.message}")
        print(f"  → Priority: {err.priority}, Stage: {err.stage}")


if __name__ == "__main__":
    main()
