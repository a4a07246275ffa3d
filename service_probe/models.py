from __future__ import annotations

from typing import List, Optional

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, model_validator


class AgentConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_sockets: int = Field(default=100, ge=1)
    max_free_sockets: int = Field(default=10, ge=1)
    free_socket_timeout_ms: int = Field(default=30000, ge=1)

    @model_validator(mode="after")
    def _free_within_max(self) -> "AgentConfig":
        if self.max_free_sockets > self.max_sockets:
            raise ValueError("max_free_sockets cannot exceed max_sockets")
        return self


class AgentOverrides(BaseModel):
    max_sockets: Optional[int] = Field(default=None, ge=1)
    max_free_sockets: Optional[int] = Field(default=None, ge=1)
    free_socket_timeout_ms: Optional[int] = Field(default=None, ge=1)


class CheckTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    url: AnyHttpUrl


class Registry(BaseModel):
    agent: AgentOverrides = AgentOverrides()
    checks: List[CheckTarget]
