# apipilot/services/insights.py
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.future import select

from apipilot.models.execution_record import ExecutionRecord
from apipilot.models.insight import Dashboard, Insight
from apipilot.models.project import Project
from apipilot.services.inference import InferenceDispatcher

logger = logging.getLogger(__name__)

INSIGHTS_PROMPT = """Act as a senior strategy consultant. Turn the raw API data below into
decisions for senior management. Do not report the data, report its IMPACT.

Focus on:
- Arbitrage: where are we buying expensive or selling cheap?
- Risk: which pattern suggests we are about to lose a contract or a customer?
- Growth: where is there an untapped opportunity?

Use executive, non-technical language.

JSON FORMAT:
{
  "insights": [
    {
      "type": "opportunity|risk|efficiency|arbitrage",
      "title": "Strategic conclusion",
      "description": "Impact analysis",
      "financial_impact": "Estimated amount or % of savings/gain",
      "confidence": 0.95,
      "strategic_priority": "High|Medium|Low",
      "actionable_next_step": "Immediate action for management"
    }
  ]
}"""

DASHBOARDS_PROMPT = """Design an executive control dashboard from the real data below.
Every widget must answer the question "are we making or losing money?".

Rules:
1. No placeholders, use the real values from the data.
2. Widget types: 'stat' for critical KPIs, 'bar' or 'line' for trends, 'pie' for distributions.
3. 'data' is an array of {"label", "value"} objects. When data is missing, project the trend linearly.

JSON FORMAT:
{
  "dashboards": [
    {
      "title": "Strategic control panel",
      "widgets": [
        {
          "type": "bar|line|pie|stat",
          "title": "Executive title",
          "description": "Business meaning of the metric",
          "data": [{"label": "...", "value": 0}],
          "current_value": "value",
          "trend": "+X% vs last month",
          "insight_label": "Short conclusion"
        }
      ]
    }
  ]
}"""


class InsightGenerator:
    def __init__(self, dispatcher: InferenceDispatcher, max_tokens: int = 4096):
        self.dispatcher = dispatcher
        self.max_tokens = max_tokens

    async def _ask(self, prompt: str, data: Any, hint: Optional[str]) -> Dict[str, Any]:
        return await self.dispatcher.infer(
            prompt,
            json.dumps(data, default=str),
            provider_hint=hint,
            content_label="Input data",
            temperature=0.3,
            max_tokens=self.max_tokens,
        )

    async def generate_insights(self, data: Any, hint: Optional[str] = None) -> Dict[str, Any]:
        logger.info(f"Generating strategic insights with model hint {hint!r}")
        result = await self._ask(INSIGHTS_PROMPT, data, hint)
        if not isinstance(result.get("insights"), list):
            result["insights"] = []
        return result

    async def suggest_dashboards(self, data: Any, hint: Optional[str] = None) -> Dict[str, Any]:
        logger.info(f"Suggesting dashboards with model hint {hint!r}")
        result = await self._ask(DASHBOARDS_PROMPT, data, hint)
        if not isinstance(result.get("dashboards"), list):
            result["dashboards"] = []
        return result


def _to_insight(project_id: int, item: Dict[str, Any], extra: Dict[str, Any]) -> Insight:
    confidence = item.get("confidence")
    try:
        confidence = float(confidence) if confidence is not None else None
    except (TypeError, ValueError):
        confidence = None
    return Insight(
        project_id=project_id,
        type=item.get("type"),
        title=item.get("title") or "Untitled insight",
        description=item.get("description"),
        confidence=confidence,
        metadata_={
            "actionable_next_step": item.get("actionable_next_step"),
            "financial_impact": item.get("financial_impact"),
            "strategic_priority": item.get("strategic_priority"),
            **extra,
        },
    )


class IntelligenceService:
    """Keeps a project's insights and dashboards in step with its execution data."""

    def __init__(self, session_factory: async_sessionmaker, generator: InsightGenerator, context_size: int = 2):
        self.session_factory = session_factory
        self.generator = generator
        self.context_size = context_size

    async def _hint(self, project_id: int) -> Optional[str]:
        async with self.session_factory() as session:
            project = await session.get(Project, project_id)
            return project.ai_model if project else None

    async def generate_from_records(self, project_id: int, data_ids: List[int]) -> List[Insight]:
        data_content = []
        if data_ids:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(ExecutionRecord).where(
                        ExecutionRecord.id.in_(data_ids),
                        ExecutionRecord.project_id == project_id,
                    )
                )
                data_content = [
                    {"data": r.data, "executed_at": r.executed_at} for r in result.scalars().all()
                ]

        result = await self.generator.generate_insights(data_content, await self._hint(project_id))
        insights = [
            _to_insight(project_id, item, {"source_data_ids": data_ids})
            for item in result["insights"] if isinstance(item, dict)
        ]
        if not insights:
            return []

        async with self.session_factory() as session:
            session.add_all(insights)
            await session.commit()
        logger.info(f"Saved {len(insights)} insight(s) for project {project_id}")
        return insights

    async def refresh(self, project_id: int, new_data: Any) -> None:
        logger.info(f"Auto-intelligence triggered for project {project_id}")

        async with self.session_factory() as session:
            result = await session.execute(
                select(ExecutionRecord.data)
                .where(ExecutionRecord.project_id == project_id)
                .order_by(ExecutionRecord.executed_at.desc(), ExecutionRecord.id.desc())
                .limit(self.context_size)
            )
            context = [new_data, *result.scalars().all()]

        hint = await self._hint(project_id)

        insight_result = await self.generator.generate_insights(context, hint)
        generated_at = datetime.now(timezone.utc).isoformat()
        insights = [
            _to_insight(project_id, item, {"auto_generated": True, "generated_at": generated_at})
            for item in insight_result["insights"] if isinstance(item, dict)
        ]
        if insights:
            async with self.session_factory() as session:
                session.add_all(insights)
                await session.commit()
            logger.info(f"Auto-saved {len(insights)} insights")

        dashboard_result = await self.generator.suggest_dashboards(context, hint)
        dashboards = [
            Dashboard(
                project_id=project_id,
                title=f"{d.get('title') or 'Dashboard'} (Auto-Updated)",
                config={"widgets": d.get("widgets") or []},
                is_active=True,
            )
            for d in dashboard_result["dashboards"] if isinstance(d, dict)
        ]
        if dashboards:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(
                        update(Dashboard)
                        .where(Dashboard.project_id == project_id)
                        .values(is_active=False)
                    )
                    session.add_all(dashboards)
            logger.info(f"Auto-saved {len(dashboards)} dashboard(s)")
