"""Pydantic models for the variable and workflow service."""

from gvflow.models.entity import (
    Npc,
    NpcCreate,
    NpcPromptTemplate,
    NpcUpdate,
    WorkTask,
    WorkTaskCreate,
    WorkTaskUpdate,
)
from gvflow.models.event import SourceRenamed, VariableEvent, VariableEventType
from gvflow.models.variable import (
    Variable,
    VariableCreate,
    VariableSource,
    VariableType,
    VariableUpdate,
    stringify_value,
)
from gvflow.models.workflow import (
    BranchLabel,
    ExecutionStatus,
    NodeRunStatus,
    NodeState,
    NodeType,
    Position,
    Workflow,
    WorkflowConnection,
    WorkflowConnectionCreate,
    WorkflowCreate,
    WorkflowExecution,
    WorkflowGraph,
    WorkflowMetadata,
    WorkflowNode,
    WorkflowNodeCreate,
    WorkflowNodeUpdate,
    WorkflowUpdate,
)

__all__ = [
    # Entities
    "Npc",
    "NpcCreate",
    "NpcPromptTemplate",
    "NpcUpdate",
    "WorkTask",
    "WorkTaskCreate",
    "WorkTaskUpdate",
    # Events
    "SourceRenamed",
    "VariableEvent",
    "VariableEventType",
    # Variables
    "Variable",
    "VariableCreate",
    "VariableSource",
    "VariableType",
    "VariableUpdate",
    "stringify_value",
    # Workflows
    "BranchLabel",
    "ExecutionStatus",
    "NodeRunStatus",
    "NodeState",
    "NodeType",
    "Position",
    "Workflow",
    "WorkflowConnection",
    "WorkflowConnectionCreate",
    "WorkflowCreate",
    "WorkflowExecution",
    "WorkflowGraph",
    "WorkflowMetadata",
    "WorkflowNode",
    "WorkflowNodeCreate",
    "WorkflowNodeUpdate",
    "WorkflowUpdate",
]
