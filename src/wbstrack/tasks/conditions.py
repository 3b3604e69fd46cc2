"""Ordered completion conditions per task."""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncConnection

from wbstrack.core.logging import get_logger
from wbstrack.database.queries import BaseStore
from wbstrack.database.schema import task_completion_conditions
from wbstrack.tasks.models import CompletionCondition, CompletionConditionInput

logger = get_logger("conditions")

ConditionItem = Union[CompletionConditionInput, str]


def normalize_descriptions(items: Iterable[ConditionItem]) -> List[str]:
    """Trim descriptions and drop the blank ones, keeping order."""
    descriptions = []
    for item in items:
        text = item if isinstance(item, str) else item.description
        text = (text or "").strip()
        if text:
            descriptions.append(text)
    return descriptions


class CompletionConditionStore(BaseStore):
    """Full-replace persistence for ``task_completion_conditions``."""

    async def sync(
        self,
        task_id: str,
        items: Iterable[ConditionItem],
        timestamp: Optional[datetime] = None,
        conn: Optional[AsyncConnection] = None,
    ) -> List[CompletionCondition]:
        """
        Replace the task's conditions with ``items`` in order.

        Blank descriptions are skipped without error.
        """
        descriptions = normalize_descriptions(items)
        timestamp = timestamp or self.now()

        async with self._writing(conn) as c:
            await c.execute(
                delete(task_completion_conditions).where(
                    task_completion_conditions.c.task_id == task_id
                )
            )
            if descriptions:
                await c.execute(
                    task_completion_conditions.insert(),
                    [
                        {
                            "id": self.generate_id(),
                            "task_id": task_id,
                            "description": description,
                            "order_index": index,
                            "created_at": timestamp,
                            "updated_at": timestamp,
                        }
                        for index, description in enumerate(descriptions)
                    ],
                )
            collected = await self.collect([task_id], conn=c)

        logger.debug("Synced completion conditions", task_id=task_id, count=len(descriptions))
        return collected[task_id]

    async def collect(
        self, task_ids: Iterable[str], conn: Optional[AsyncConnection] = None
    ) -> Dict[str, List[CompletionCondition]]:
        ids = list(dict.fromkeys(task_ids))
        result_map: Dict[str, List[CompletionCondition]] = {task_id: [] for task_id in ids}
        if not ids:
            return result_map

        query = (
            select(task_completion_conditions)
            .where(task_completion_conditions.c.task_id.in_(ids))
            .order_by(task_completion_conditions.c.task_id, task_completion_conditions.c.order_index)
        )
        async with self._reading(conn) as c:
            result = await c.execute(query)
            for row in result.fetchall():
                result_map[row.task_id].append(CompletionCondition(**row._mapping))
        return result_map
