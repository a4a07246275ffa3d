import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from pydantic import ValidationError

from service_probe import registry
from service_probe.checks.http_check import ServiceCheck
from service_probe.models import AgentConfig, CheckTarget

CHECKS_YML = """
agent:
  max_sockets: 20
checks:
  - name: users-api
    url: https://users-api.local/health/ping
  - name: audit-service
    url: http://audit.local:8080/health
"""


class RegistryTests(unittest.TestCase):
    def _write(self, td: str, text: str) -> Path:
        path = Path(td) / "checks.yml"
        path.write_text(text)
        return path

    def test_load_registry_parses_targets(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            reg = registry.load_registry(self._write(td, CHECKS_YML))

        self.assertEqual([t.name for t in reg.checks], ["users-api", "audit-service"])
        self.assertEqual(str(reg.checks[1].url), "http://audit.local:8080/health")
        self.assertEqual(reg.agent.max_sockets, 20)
        self.assertIsNone(reg.agent.max_free_sockets)

    def test_missing_file_raises(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(FileNotFoundError):
                registry.load_registry(Path(td) / "nope.yml")

    def test_duplicate_names_rejected(self) -> None:
        text = """
checks:
  - name: users-api
    url: http://a.local/health
  - name: users-api
    url: http://b.local/health
"""
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaisesRegex(ValueError, "Duplicate check name: users-api"):
                registry.load_registry(self._write(td, text))

    def test_non_http_url_rejected(self) -> None:
        text = """
checks:
  - name: files
    url: ftp://files.local/
"""
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(ValidationError):
                registry.load_registry(self._write(td, text))

    def test_agent_overrides_merge_onto_settings(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            reg = registry.load_registry(self._write(td, CHECKS_YML))

        with patch.object(registry.settings, "SERVICE_AGENT_MAX_SOCKETS", 50), patch.object(
            registry.settings, "SERVICE_AGENT_MAX_FREE_SOCKETS", 4
        ), patch.object(registry.settings, "SERVICE_AGENT_FREE_SOCKET_TIMEOUT_MS", 15000):
            agent = registry.agent_for(reg)

        self.assertEqual(
            agent,
            AgentConfig(max_sockets=20, max_free_sockets=4, free_socket_timeout_ms=15000),
        )

    def test_build_checks_makes_one_probe_per_target(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            reg = registry.load_registry(self._write(td, CHECKS_YML))

        checks = registry.build_checks(reg)
        try:
            self.assertEqual(set(checks), {"users-api", "audit-service"})
            self.assertIsInstance(checks["users-api"], ServiceCheck)
            self.assertEqual(checks["users-api"].url, "https://users-api.local/health/ping")
            self.assertIsNot(checks["users-api"]._session, checks["audit-service"]._session)
        finally:
            for check in checks.values():
                check.close()


class ModelTests(unittest.TestCase):
    def test_agent_defaults(self) -> None:
        agent = AgentConfig()
        self.assertEqual(
            (agent.max_sockets, agent.max_free_sockets, agent.free_socket_timeout_ms),
            (100, 10, 30000),
        )

    def test_agent_rejects_non_positive_values(self) -> None:
        with self.assertRaises(ValidationError):
            AgentConfig(max_sockets=0)

    def test_agent_rejects_more_free_than_max_sockets(self) -> None:
        with self.assertRaises(ValidationError):
            AgentConfig(max_sockets=2, max_free_sockets=3)

    def test_settings_build_agent_config(self) -> None:
        with patch.object(registry.settings, "SERVICE_AGENT_MAX_SOCKETS", 12), patch.object(
            registry.settings, "SERVICE_AGENT_MAX_FREE_SOCKETS", 6
        ):
            agent = registry.settings.agent_config()
        self.assertEqual((agent.max_sockets, agent.max_free_sockets), (12, 6))

    def test_check_target_is_frozen(self) -> None:
        target = CheckTarget(name="users-api", url="http://users-api.local/health")
        with self.assertRaises(ValidationError):
            target.name = "other"


if __name__ == "__main__":
    unittest.main()
