"""Best-effort access to the interpreter's package manager"""

from typing import Dict, List, Optional

from notebook_engine.execution.service import ExecutionService
from notebook_engine.logging_config import get_logger
from notebook_engine.scripts.packages import build_install_script, build_list_packages_script

logger = get_logger(__name__)


class PackageManager:
    """Installs and lists packages in the external interpreter's environment."""

    def __init__(self, service: ExecutionService, install_timeout_ms: int = 300000):
        self.service = service
        self.install_timeout_ms = install_timeout_ms

    async def install_package(self, requirement: str) -> bool:
        """
        Install one requirement with pip.

        Returns:
            True if pip reported success. No version pinning is guaranteed.

        Raises:
            ValidationError: If the requirement string is malformed
        """
        code = build_install_script(requirement)
        result = await self.service.execute_training(
            code, rows=[], timeout_ms=self.install_timeout_ms
        )
        installed = bool(
            result.success and isinstance(result.result, dict) and result.result.get("installed")
        )
        logger.info(
            "package_install_finished",
            package=requirement,
            installed=installed,
            error=None if installed else (result.error or _log_tail(result.result)),
        )
        return installed

    async def list_packages(self, timeout_ms: Optional[int] = None) -> List[Dict[str, str]]:
        """Installed distributions as ``{name, version}``; empty if listing fails."""
        result = await self.service.execute_training(
            build_list_packages_script(), rows=[], timeout_ms=timeout_ms
        )
        if not result.success or not isinstance(result.result, list):
            logger.warning("package_listing_failed", error=result.error)
            return []
        return [
            {"name": str(item.get("name")), "version": str(item.get("version"))}
            for item in result.result
            if isinstance(item, dict)
        ]


def _log_tail(value) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("log") or None
    return None
