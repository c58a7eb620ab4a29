"""Example: register a custom step and run a listing workflow in one process."""

import asyncio
import logging

from conductor import StepRegistry, WorkflowOrchestrator, default_registry
from conductor.persistence import InMemoryWorkflowRepository
from conductor.transports import InMemoryTransport

registry: StepRegistry = default_registry()


@registry.step("competitive_analysis_engine")
async def competitive_analysis(step_name: str, workflow_id: int) -> dict:
    # a real implementation would query comparable sales here
    await asyncio.sleep(0.1)
    return {"comparables": 12, "suggested_price": 415000}


async def main():
    logging.basicConfig(level=logging.INFO)

    orchestrator = WorkflowOrchestrator(
        repository=InMemoryWorkflowRepository(),
        transport=InMemoryTransport(),
        registry=registry,
    )
    await orchestrator.initialize()

    workflow_id = await orchestrator.create_workflow("P-1001", "full_listing")
    await orchestrator.start(lifespan=3)

    report = await orchestrator.get_workflow_status(workflow_id)
    print(f"Workflow {workflow_id}: {report.workflow.status.value}")
    for job in report.jobs:
        print(f"  {job.priority}. {job.node_name}: {job.status.value} {job.result or ''}")


if __name__ == "__main__":
    asyncio.run(main())
