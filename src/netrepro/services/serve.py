"""ServeService — runs the line-acknowledging server to completion."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from netrepro.errors import ReproError
from netrepro.net import lifecycle
from netrepro.services.result import ServiceError, ServiceResult

if TYPE_CHECKING:
    from netrepro.config.settings import ReproSettings
    from netrepro.net.handler import EchoFn
    from netrepro.net.lifecycle import CancelToken
    from netrepro.plugins.manager import PluginManager

logger = logging.getLogger(__name__)


class ServeService:
    """Adapts :func:`netrepro.net.lifecycle.run` to the ServiceResult contract.

    Configuration and bind errors become failed results; everything after a
    successful bind ends in an ``ok`` result once the token is cancelled.
    """

    def __init__(self, settings: ReproSettings, plugins: PluginManager | None = None) -> None:
        self._settings = settings
        self._plugins = plugins

    def serve(self, token: CancelToken, *, echo: EchoFn | None = None) -> ServiceResult:
        config = self._settings.server_config()
        try:
            stats = lifecycle.run(
                config,
                token,
                plugins=self._plugins,
                provider=self._settings.overlay.provider,
                echo=echo,
            )
        except ReproError as exc:
            logger.error("%s", exc)
            return ServiceResult(
                ok=False,
                op="serve",
                error=ServiceError(
                    code=exc.code,
                    message=str(exc),
                    detail={"hostname": config.hostname, "port": config.port},
                ),
            )
        return ServiceResult(
            ok=True,
            op="serve",
            data={"address": stats.address, "connections": stats.connections},
        )
