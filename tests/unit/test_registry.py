import pytest

from convoflow.persistence import InMemoryWorkflowRepository, TemplateRecord
from convoflow.registry import BUILTIN_TEMPLATES, TemplateRegistry, seed_templates


class BrokenCatalog(InMemoryWorkflowRepository):
    async def list_templates(self, category=None, active_only=True):
        raise RuntimeError("catalog unavailable")


@pytest.mark.asyncio
async def test_seed_templates_is_idempotent_and_keeps_rates():
    repo = InMemoryWorkflowRepository()
    inserted = await seed_templates(repo)
    assert inserted == [t.id for t in BUILTIN_TEMPLATES]

    await repo.update_template_success_rate("schedule-meeting", 42.0)
    assert await seed_templates(repo) == []
    template = await repo.get_template("schedule-meeting")
    assert template.success_rate == 42.0


@pytest.mark.asyncio
async def test_highest_success_rate_wins():
    repo = InMemoryWorkflowRepository()
    await seed_templates(repo)
    await repo.save_template(
        TemplateRecord(
            id="quick-sync",
            name="Quick Sync",
            category="scheduling",
            success_rate=99.0,
            base_structure={"steps": [{"id": "book", "type": "execute", "title": "Book"}]},
        )
    )
    template = await TemplateRegistry(repo).get_template_for_category("scheduling")
    assert template.id == "quick-sync"


@pytest.mark.asyncio
async def test_capabilities_filter_templates():
    repo = InMemoryWorkflowRepository()
    await seed_templates(repo)
    registry = TemplateRegistry(repo)

    matched = await registry.get_template_for_category("scheduling", ["calendar", "email"])
    assert matched.id == "schedule-meeting"

    assert await registry.get_template_for_category("communication", ["email"]) is None
    fallback = await registry.get_template_for_category("scheduling", ["email"])
    assert fallback.id == "default-scheduling"


@pytest.mark.asyncio
async def test_malformed_structure_only_falls_back_for_scheduling():
    repo = InMemoryWorkflowRepository()
    for category in ("scheduling", "support"):
        await repo.save_template(
            TemplateRecord(
                id=f"broken-{category}",
                name="Broken",
                category=category,
                base_structure="{not json",
            )
        )
    registry = TemplateRegistry(repo)

    assert (await registry.get_template_for_category("scheduling")).id == "default-scheduling"
    assert await registry.get_template_for_category("support") is None


@pytest.mark.asyncio
async def test_store_errors_degrade_to_default_or_none():
    registry = TemplateRegistry(BrokenCatalog())
    assert (await registry.get_template_for_category("scheduling")).id == "default-scheduling"
    assert await registry.get_template_for_category("support") is None
