#!/usr/bin/env python3
"""
Run a chatbot flow against one or more messages from the command line.
Loads the YAML flow definitions, optionally seeds them into the database,
validates the selected flow and prints the responses for each message.
"""

import asyncio
import json
import sys
from pathlib import Path

# Add project root and backend to Python path
ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))
sys.path.insert(0, str(ROOT / "backend"))

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from ai.chatbot import ChatbotFlowEngine, ExecutionContext, InMemoryFlowGraphStore

logger = get_logger(__name__)


async def build_store(flows_path: str, use_database: bool):
    """Load flow definitions into a store."""
    memory_store = InMemoryFlowGraphStore()
    loaded = memory_store.load_flows_from_directory(flows_path)
    print(f"📁 Loaded {loaded} flow(s) from {flows_path}")

    if not use_database:
        return memory_store

    from app.core.database import check_db_connection, create_tables
    from app.services.chatbot_store import SQLAlchemyFlowGraphStore

    if not check_db_connection():
        raise SystemExit(f"❌ Cannot connect to {settings.DATABASE_URL}")
    create_tables()

    store = SQLAlchemyFlowGraphStore()
    for flow in memory_store.flows.values():
        await store.save_flow(flow)
    print(f"✅ Seeded {len(memory_store.flows)} flow(s) into {settings.DATABASE_URL}")
    return store


async def run_flow(flow_id: str, messages, flows_path: str, use_database: bool, verbose: bool):
    """Run a flow once per message and print the outcome."""
    store = await build_store(flows_path, use_database)
    engine = ChatbotFlowEngine(store)

    report = await engine.validate_flow(flow_id)
    for warning in report.warnings:
        print(f"   ⚠️  {warning}")
    if not report.is_valid:
        for error in report.errors:
            print(f"   ✗ {error}")
        raise SystemExit(f"❌ Flow {flow_id} is not valid")

    for message in messages:
        execution = ExecutionContext.create(
            bot_id="cli",
            flow_id=flow_id,
            channel_id="cli",
            tenant_id=settings.DEFAULT_TENANT_ID,
        )
        if use_database:
            await store.create_execution(execution)

        result = await engine.execute_flow(execution, message)

        print(f"\n👤 {message}")
        for response in result.responses:
            content = response.content if isinstance(response.content, str) else json.dumps(response.content)
            print(f"🤖 [{response.type.value}] {content}")
        print(f"   status={result.status.value} nodes={result.nodes_executed} "
              f"fallback={result.fallback_to_human}")
        if result.error:
            print(f"   error: {result.error}")
        if verbose:
            print(json.dumps(result.final_context, indent=2, default=str))


async def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Run a chatbot flow from the command line")
    parser.add_argument("flow_id", help="Flow id to execute (e.g. support_triage)")
    parser.add_argument("messages", nargs="+", help="User messages, one execution each")
    parser.add_argument(
        "--flows-path",
        default=settings.CHATBOT_FLOWS_PATH,
        help=f"Directory of YAML flow definitions (default: {settings.CHATBOT_FLOWS_PATH})"
    )
    parser.add_argument("--db", action="store_true", help="Seed and run against DATABASE_URL")
    parser.add_argument("--verbose", action="store_true", help="Print the final context")

    args = parser.parse_args()

    setup_logging()
    logger.info(f"Running flow {args.flow_id} in {settings.ENVIRONMENT}")
    await run_flow(args.flow_id, args.messages, args.flows_path, args.db, args.verbose)


if __name__ == "__main__":
    asyncio.run(main())
