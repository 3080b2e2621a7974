from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Immutable value object shared by every schema of the gateway"""

    model_config = ConfigDict(frozen=True, extra="forbid")
