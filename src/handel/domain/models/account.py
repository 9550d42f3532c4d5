"""Account configuration handed through to deployers."""

from __future__ import annotations

from pydantic import BaseModel, Field


class AccountConfig(BaseModel):
    """Cloud account the environment is deployed into.

    Only ``account_id`` and ``region`` are interpreted by the core; any
    other keys are preserved untouched for the deployers.
    """

    account_id: str
    region: str
    vpc: str | None = None
    handel_resource_tags: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True, "extra": "allow", "coerce_numbers_to_str": True}
