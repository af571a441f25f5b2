import os
from typing import Dict, Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "ORDER_ENGINE_"


class EngineConfig(BaseModel):
    """Tunable constants of the order engine.

    Defaults match the storefront's production values (18% GST, PKR).
    Any field can be overridden through an ORDER_ENGINE_<FIELD> variable.
    """
    root_dir: str = "."
    tax_rate: float = Field(default=0.18, ge=0, lt=1)
    currency: str = "PKR"
    default_country: str = "Pakistan"
    max_items_per_order: int = Field(default=100, ge=1)
    max_item_quantity: int = Field(default=1000, ge=1)
    default_limit: int = 20
    max_limit: int = 100
    export_limit: int = 10000
    order_number_seed: int = Field(default=1001, ge=1)
    busy_timeout: float = 30.0

    @property
    def storage_dir(self) -> str:
        return os.path.join(self.root_dir, ".order_engine")

    @property
    def db_path(self) -> str:
        return os.path.join(self.storage_dir, "orders.db")

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, **overrides) -> "EngineConfig":
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None:
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        # pydantic coerces the raw strings ("0.17", "50") to the field types
        return cls.model_validate(values)
