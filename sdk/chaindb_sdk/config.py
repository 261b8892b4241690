"""Mirror session settings."""

from pydantic import Field
from pydantic_settings import BaseSettings


class MirrorSettings(BaseSettings):
    """Mirror configuration loaded from environment."""

    # ChainDB server
    base_url: str = Field(default="http://localhost:18080", description="ChainDB HTTP base URL")
    ws_path: str = Field(default="/ws", description="Push channel path")

    # Requests
    request_timeout: float = Field(default=10.0, description="HTTP request timeout seconds")

    model_config = {"env_prefix": "CHAINDB_"}

    @property
    def ws_url(self) -> str:
        """Full push channel URL."""
        return self.base_url.rstrip("/") + self.ws_path
