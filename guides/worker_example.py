"""Example showing how to run a conductor worker against the configured transport."""

import asyncio

from conductor import WorkflowOrchestrator, default_registry, get_repository, get_transport
from conductor.config import load_config


async def main():
    config = load_config()
    orchestrator = WorkflowOrchestrator(
        repository=get_repository(config=config),
        transport=get_transport(config=config),
        registry=default_registry(delay=config.orchestrator.placeholder_delay),
        topic=config.queue.topic,
        step_timeout=config.orchestrator.step_timeout,
    )
    await orchestrator.initialize()

    # Start consuming job dispatches
    await orchestrator.start()


if __name__ == "__main__":
    asyncio.run(main())
