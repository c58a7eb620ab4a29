import pytest

from conductor.errors import UnknownStepError
from conductor.nodes import PlaceholderStep, StepHandler, StepRegistry, default_registry
from conductor.plans import PLANS


def test_default_registry_covers_every_plan_step():
    registry = default_registry()
    for steps in PLANS.values():
        for name in steps:
            assert name in registry
    assert set(registry.names()) == {name for steps in PLANS.values() for name in steps}
    assert "mystery_node" not in registry


def test_unknown_step_raises():
    registry = StepRegistry()
    with pytest.raises(UnknownStepError) as exc_info:
        registry.get("mystery_node")
    assert exc_info.value.node_name == "mystery_node"
    assert "mystery_node" in str(exc_info.value)


@pytest.mark.asyncio
async def test_register_plain_function_and_decorator():
    registry = StepRegistry()

    async def pricing(step_name, workflow_id):
        return {"step": step_name, "workflow": workflow_id}

    registry.register("pricing_analyzer", pricing)

    @registry.step("photo_enhancer")
    async def enhance(step_name, workflow_id):
        return {"enhanced": True}

    assert registry.names() == ["photo_enhancer", "pricing_analyzer"]
    assert isinstance(registry.get("pricing_analyzer"), StepHandler)
    assert await registry.get("pricing_analyzer").execute("pricing_analyzer", 3) == {
        "step": "pricing_analyzer",
        "workflow": 3,
    }
    assert await registry.get("photo_enhancer").execute("photo_enhancer", 3) == {
        "enhanced": True
    }


@pytest.mark.asyncio
async def test_placeholder_reports_success():
    result = await PlaceholderStep().execute("test_node", 1)
    assert result["node_name"] == "test_node"
    assert result["status"] == "success"
    assert "timestamp" in result
