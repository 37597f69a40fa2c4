"""
Command line entry point for the archive engine.

    $ archivist providers
    $ archivist index --records archive.json
    $ archivist ask "What did Sarah say about the budget?" --records archive.json
    $ archivist agent --pattern missed_deadlines --records archive.json
    $ archivist export <conversation-id> --format markdown

Records are read from a JSON file holding a list of objects with at least
``id``, ``sender`` (or ``from``), ``subject`` and ``body``.
"""

import argparse
import asyncio
import json
import sys
import uuid
from pathlib import Path

from . import __version__
from .config.container import Container, setup_container
from .config.settings import get_settings
from .observability.logging import get_logger, set_trace_id, setup_logging
from .records import ArchiveRecord

logger = get_logger(__name__)


def load_records(path: Path) -> list[ArchiveRecord]:
    """Read archive records from a JSON list."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON list of records")
    return [ArchiveRecord.from_dict(item) for item in data]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="archivist", description="Retrieval and conversation over a personal mail archive"
    )
    parser.add_argument("--version", action="version", version=f"archivist {__version__}")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    parser.add_argument("--provider", default=None, help="Embedding provider to activate")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("providers", help="Probe and list embedding providers")

    index = commands.add_parser("index", help="Index records and print archive statistics")
    index.add_argument("--records", type=Path, required=True)

    ask = commands.add_parser("ask", help="Ask a question about the archive")
    ask.add_argument("question")
    ask.add_argument("--records", type=Path, required=True)
    ask.add_argument("--conversation", default=None, help="Continue a saved conversation")

    agent = commands.add_parser("agent", help="Run the search agent")
    agent.add_argument("query", nargs="?", default=None)
    agent.add_argument("--records", type=Path, required=True)
    agent.add_argument("--pattern", default=None, help="Named pattern to search for")

    export = commands.add_parser("export", help="Export a saved conversation")
    export.add_argument("conversation_id")
    export.add_argument("--format", default="markdown", choices=["markdown", "json", "text"])

    return parser


async def _activate_provider(container: Container, name: str | None) -> None:
    registry = container.get("embedding_registry")
    status = await registry.select(name or container.settings.embeddings.provider)
    if not status.available:
        logger.warning(f"{status.message}; falling back to keyword search")
    print(registry.status_message)


async def _index(container: Container, records: list[ArchiveRecord]):
    index = container.get("document_index")
    progress = await index.index_records(records)
    if progress.failed_documents:
        print(f"{progress.failed_documents} records could not be indexed", file=sys.stderr)
    return index


async def cmd_providers(container: Container, args: argparse.Namespace) -> int:
    registry = container.get("embedding_registry")
    await registry.refresh()
    active = registry.active.name
    for descriptor in registry.descriptors():
        marker = "*" if descriptor.name == active else " "
        state = "available" if descriptor.is_available else "unavailable"
        print(
            f"{marker} {descriptor.name:<22} {descriptor.kind.value:<13} "
            f"{descriptor.model:<28} {state:<12} {descriptor.status_message}"
        )

    generator = container.get("generation_backend")
    healthy = await generator.health_check()
    state = "reachable" if healthy else "unreachable"
    print(f"\nGeneration: {generator.name} {generator.model} ({state})")
    return 0


async def cmd_index(container: Container, args: argparse.Namespace) -> int:
    records = load_records(args.records)
    await _activate_provider(container, args.provider)
    index = await _index(container, records)
    stats = index.stats()
    print(f"Indexed {stats.total_documents} records ({stats.embedded_documents} with embeddings)")
    print(f"Unique senders: {stats.unique_senders}")
    if stats.earliest and stats.latest:
        print(f"Date range: {stats.earliest} to {stats.latest}")
    for sender, count in stats.top_senders:
        print(f"  {sender}: {count}")
    return 0


async def cmd_ask(container: Container, args: argparse.Namespace) -> int:
    records = load_records(args.records)
    await _activate_provider(container, args.provider)
    await _index(container, records)

    engine = container.get("conversation_engine")
    engine.set_records(records)
    if args.conversation:
        engine.load(args.conversation)

    reply = await engine.send(args.question)
    print(reply.content)
    if reply.citations:
        print("\nSources:")
        for citation in reply.citations:
            print(
                f"  {citation.marker} {citation.subject} "
                f"(from: {citation.sender}, {citation.date})"
            )
    if engine.suggested_follow_ups:
        print("\nYou might also ask:")
        for question in engine.suggested_follow_ups:
            print(f"  - {question}")
    print(f"\nConversation: {engine.current_id}")
    return 1 if reply.metadata and reply.metadata.error else 0


async def cmd_agent(container: Container, args: argparse.Namespace) -> int:
    if not args.query and not args.pattern:
        print("Either a query or --pattern is required", file=sys.stderr)
        return 2
    records = load_records(args.records)
    await _activate_provider(container, args.provider)
    await _index(container, records)

    agent = container.get("search_agent")
    if args.pattern:
        result = await agent.search_for_pattern(args.pattern, records)
    else:
        result = await agent.search(args.query, records)

    print(result.summary)
    print(f"\n{result.total_matches} matches ({result.intent.strategy.value})")
    for record in result.results:
        print(f"  [{record.id}] {record.date}  {record.sender_name}: {record.subject}")
    return 0


async def cmd_export(container: Container, args: argparse.Namespace) -> int:
    engine = container.get("conversation_engine")
    try:
        print(engine.export(args.format, conversation_id=args.conversation_id))
    except KeyError:
        print(f"Conversation not found: {args.conversation_id}", file=sys.stderr)
        return 1
    return 0


COMMANDS = {
    "providers": cmd_providers,
    "index": cmd_index,
    "ask": cmd_ask,
    "agent": cmd_agent,
    "export": cmd_export,
}


async def run(args: argparse.Namespace, container: Container) -> int:
    async with container.lifespan():
        return await COMMANDS[args.command](container, args)


def main(argv=None) -> int:
    """Parse arguments, configure logging and dispatch the command."""
    args = build_parser().parse_args(argv)

    settings = get_settings()
    setup_logging(args.log_level or settings.observability.log_level)
    settings.ensure_directories()
    set_trace_id(uuid.uuid4().hex[:12])

    container = setup_container(settings)
    try:
        return asyncio.run(run(args, container))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
    except Exception as e:
        logger.error(f"Command failed: {e}", command=args.command)
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cli_main():
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    cli_main()
