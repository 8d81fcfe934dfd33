from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError


class SettingsSchema(BaseModel):
    weight_unit: Literal["kg", "lb"] = "kg"
    max_weight_cache_version: int = Field(2, ge=1)
    idle_delay_ms: int = Field(0, ge=0)
    log_level: Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    local_store_path: str = "guest_store.json"
    session_ttl_hours: int = Field(720, ge=1)
    identity_provider_secret: Optional[str] = None


def validate_settings(data: dict) -> None:
    try:
        SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
