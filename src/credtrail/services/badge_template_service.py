"""Badge template queries used by deep linking."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credtrail.models.badge_template import BadgeTemplateModel
from credtrail.utils.ids import PREFIX_BADGE_TEMPLATE, generate_entity_id


async def list_badge_templates(
    session: AsyncSession,
    tenant_id: str,
    include_archived: bool = False,
) -> list[BadgeTemplateModel]:
    query = select(BadgeTemplateModel).where(BadgeTemplateModel.tenant_id == tenant_id)
    if not include_archived:
        query = query.where(BadgeTemplateModel.is_archived.is_(False))

    result = await session.execute(
        query.order_by(BadgeTemplateModel.title, BadgeTemplateModel.id)
    )
    return list(result.scalars().all())


async def create_badge_template(
    session: AsyncSession,
    tenant_id: str,
    slug: str,
    title: str,
    description: str | None = None,
    criteria_uri: str | None = None,
    image_uri: str | None = None,
    is_archived: bool = False,
    template_id: str | None = None,
) -> BadgeTemplateModel:
    template = BadgeTemplateModel(
        id=template_id or generate_entity_id(PREFIX_BADGE_TEMPLATE),
        tenant_id=tenant_id,
        slug=slug,
        title=title,
        description=description,
        criteria_uri=criteria_uri,
        image_uri=image_uri,
        is_archived=is_archived,
    )
    session.add(template)
    await session.flush()
    return template
