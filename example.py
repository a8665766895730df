#!/usr/bin/env python3
"""Example script demonstrating the agent runtime usage."""

import asyncio

from agent_runtime import get_settings
from agent_runtime.exceptions import ConfigurationError
from agent_runtime.logging_config import get_logger, setup_logging
from agent_runtime.runtime import RuntimeContext


async def main() -> None:
    """Build one agent runtime and ask it a question on a resumable thread."""
    settings = get_settings()
    setup_logging(settings.logging)

    logger = get_logger(__name__)

    logger.info(
        "agent_runtime_example",
        environment=settings.environment,
        model=settings.llm.default_model,
        workspace=str(settings.workspace.path) if settings.workspace.path else None,
    )

    print("\n" + "=" * 70)
    print("Agent Runtime - Example Script")
    print("=" * 70)
    print(f"\nEnvironment: {settings.environment}")
    print(f"Model: {settings.llm.default_model}")
    print(f"Checkpoints: {settings.storage.sqlite_path}")
    print(f"Workspace: {settings.workspace.path or '(state-only)'}")
    print("=" * 70 + "\n")

    async with RuntimeContext(settings) as context:
        try:
            runtime = await context.create_agent_runtime()
        except ConfigurationError as e:
            print(f"Cannot create the agent: {e}")
            print("Set LLM_ANTHROPIC_API_KEY or LLM_OPENAI_API_KEY and try again.")
            return

        config = {"configurable": {"thread_id": "example-thread"}}
        result = await runtime.agent.ainvoke(
            {"messages": [{"role": "user", "content": "Write a haiku to /haiku.txt"}]},
            config,
        )
        print(result["messages"][-1].content)

    print("\nRun again to continue the same thread from its last checkpoint.")
    print("Inspect it with: agent-runtime history example-thread\n")


if __name__ == "__main__":
    asyncio.run(main())
