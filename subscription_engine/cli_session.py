"""
CLI engine management utilities for dependency injection.
"""

from typing import Optional

from .orchestrator import Orchestrator


class CLIEngineManager:
    """Builds and owns the Orchestrator used by CLI commands."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url
        self._orchestrator: Optional[Orchestrator] = None

    @property
    def orchestrator(self) -> Orchestrator:
        if self._orchestrator is None:
            self._orchestrator = Orchestrator.from_config(database_url=self.database_url)
        return self._orchestrator

    def close(self) -> None:
        if self._orchestrator is not None:
            self._orchestrator.close()
            self._orchestrator = None


# Global CLI engine manager instance
_cli_engine_manager = None


def get_cli_engine_manager(database_url: Optional[str] = None) -> CLIEngineManager:
    """Get the global CLI engine manager instance."""
    global _cli_engine_manager
    if _cli_engine_manager is None:
        _cli_engine_manager = CLIEngineManager(database_url)
    return _cli_engine_manager


def get_cli_orchestrator() -> Orchestrator:
    return get_cli_engine_manager().orchestrator
