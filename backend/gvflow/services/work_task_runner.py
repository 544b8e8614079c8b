"""WorkTaskRunner - read-only execution of a work task against its AI service."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from gvflow.errors import GvFlowError
from gvflow.llm.adapters import ChatMessage

if TYPE_CHECKING:
    from gvflow.db.entity_store import EntityStore
    from gvflow.llm.adapters import ChatAdapterRegistry
    from gvflow.models.entity import Npc, WorkTask
    from gvflow.services.resolver import VariableResolver

logger = logging.getLogger(__name__)

INPUT_PLACEHOLDER = "{{input}}"

GENERIC_TEMPLATE = "Complete the following task and reply with the result only."

NPC_TEMPLATE = """You are {name}. {description}

Knowledge background:
{knowledge}

Action principles:
{principles}

Activity level: {level} ({level_description})

Stay in character and respond to the task below."""


class WorkTaskResult(BaseModel):
    """Outcome of a test execution."""

    success: bool
    output: str = ""
    error: str | None = None
    usage: dict[str, Any] | None = None


def build_prompt(task: WorkTask, npc: Npc | None, task_input: str) -> str:
    """Combine the task input with the NPC persona or a generic instruction.

    A customized per-task template wins over the NPC's own template, which wins
    over the default persona built from the NPC's attributes.
    """
    if task.npc_prompt_template and task.npc_prompt_template.is_customized:
        template = task.npc_prompt_template.template
    elif npc and npc.prompt_template:
        template = npc.prompt_template
    elif npc:
        template = NPC_TEMPLATE.format(
            name=npc.name,
            description=npc.description,
            knowledge=npc.knowledge_background,
            principles=npc.action_principles,
            level=npc.activity_level,
            level_description=npc.activity_level_description,
        )
    else:
        template = GENERIC_TEMPLATE

    if INPUT_PLACEHOLDER in template:
        return template.replace(INPUT_PLACEHOLDER, task_input)
    return f"{template}\n\n{task_input}".strip()


class WorkTaskRunner:
    """Runs work tasks without writing anything back to them."""

    def __init__(
        self,
        entities: EntityStore,
        resolver: VariableResolver,
        adapters: ChatAdapterRegistry,
        timeout_seconds: float = 60.0,
    ):
        self._entities = entities
        self._resolver = resolver
        self._adapters = adapters
        self._timeout = timeout_seconds

    async def get_task_input(self, task_id: str) -> str | None:
        """Stored input of a task, or None if the task does not exist."""
        task = await self._entities.get_work_task(task_id)
        return task.input if task else None

    async def test_execute(self, task_id: str, task_input: str | None = None) -> WorkTaskResult:
        """Run a task once and report the reply.

        Args:
            task_id: The task to run.
            task_input: Input overriding the task's stored input.
        """
        task = await self._entities.get_work_task(task_id)
        if task is None:
            return WorkTaskResult(success=False, error=f"Work task {task_id} not found")

        npc = await self._entities.get_npc(task.npc_id) if task.npc_id else None

        try:
            resolved = await self._resolver.resolve_text(
                task.input if task_input is None else task_input
            )
            prompt = await self._resolver.resolve_text(build_prompt(task, npc, resolved))
            adapter = self._adapters.get(task.ai_service_id)
            reply = await asyncio.wait_for(
                adapter.chat([ChatMessage(role="user", content=prompt)]),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Work task {task_id} timed out after {self._timeout}s")
            return WorkTaskResult(
                success=False, error=f"AI service timed out after {self._timeout}s"
            )
        except GvFlowError as e:
            logger.warning(f"Work task {task_id} failed: {e}")
            return WorkTaskResult(success=False, error=str(e))
        except Exception as e:
            logger.exception(f"AI service call for work task {task_id} failed: {e}")
            return WorkTaskResult(success=False, error=str(e))

        logger.info(f"Work task {task_id} executed ({len(reply.content)} chars)")
        return WorkTaskResult(success=True, output=reply.content, usage=reply.usage)
