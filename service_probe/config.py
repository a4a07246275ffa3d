import os
from pathlib import Path

from dotenv import load_dotenv

from service_probe.models import AgentConfig

load_dotenv()


class Settings:
    SERVICE_AGENT_MAX_SOCKETS: int = int(os.getenv("SERVICE_AGENT_MAX_SOCKETS", 100))
    SERVICE_AGENT_MAX_FREE_SOCKETS: int = int(
        os.getenv("SERVICE_AGENT_MAX_FREE_SOCKETS", 10)
    )
    SERVICE_AGENT_FREE_SOCKET_TIMEOUT_MS: int = int(
        os.getenv("SERVICE_AGENT_FREE_SOCKET_TIMEOUT_MS", 30000)
    )
    SERVICE_CHECKS_PATH: Path = Path(
        os.getenv(
            "SERVICE_CHECKS_PATH",
            str(Path(__file__).resolve().parents[1] / "checks.yml"),
        )
    )

    def agent_config(self) -> AgentConfig:
        return AgentConfig(
            max_sockets=self.SERVICE_AGENT_MAX_SOCKETS,
            max_free_sockets=self.SERVICE_AGENT_MAX_FREE_SOCKETS,
            free_socket_timeout_ms=self.SERVICE_AGENT_FREE_SOCKET_TIMEOUT_MS,
        )


settings = Settings()
