from dataclasses import dataclass

from .errors import PermissionDeniedError


@dataclass(frozen=True)
class SocketPermission:
    """The network access a connection needs: ``host:port`` plus actions."""

    host: str
    port: int
    actions: str = "connect,resolve"

    @property
    def name(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class SecurityPolicy:
    """
    Grants consulted before privileged operations.

    ``allow_set_factory`` gates changes to process-wide defaults such as the
    global redirect policy. ``allow_trace`` gates selecting the TRACE method,
    which is refused unless explicitly granted.
    """

    allow_set_factory: bool = True
    allow_trace: bool = False

    def check_set_factory(self) -> None:
        if not self.allow_set_factory:
            raise PermissionDeniedError("Changing process-wide connection defaults is not permitted.")

    def check_allow_trace(self) -> None:
        if not self.allow_trace:
            raise PermissionDeniedError("The TRACE method requires the allow-trace grant.")


DEFAULT_POLICY = SecurityPolicy()
