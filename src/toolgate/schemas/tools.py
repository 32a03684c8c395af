"""Tool call schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ToolDescription(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    tiers: list[str] = Field(
        ...,
        description="Tiers allowed to call the tool",
    )


class ToolCallResponse(BaseModel):
    """Result of a tool call."""

    model_config = ConfigDict(extra="forbid")

    tool_name: str
    is_error: bool = False
    content: Any = None
