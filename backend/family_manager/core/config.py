import os
from typing import List, Optional

from pydantic import BaseModel

ENV_PREFIX = "FAMILY_MANAGER_"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


class Settings(BaseModel):
    workspace_dir: str = "./workspace"
    backend_url: Optional[str] = None
    backend_key: Optional[str] = None
    identity_header: str = "X-User-Id"
    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]

    @property
    def use_remote_store(self) -> bool:
        return bool(self.backend_url and self.backend_key)

    @classmethod
    def from_env(cls) -> "Settings":
        origins = _env("CORS_ORIGINS", "*")
        return cls(
            workspace_dir=_env("WORKSPACE", "./workspace"),
            backend_url=_env("BACKEND_URL"),
            backend_key=_env("BACKEND_KEY"),
            identity_header=_env("IDENTITY_HEADER", "X-User-Id"),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )
