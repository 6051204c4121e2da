import dataclasses
import logging
import os
import threading

from dataclasses import dataclass, field

from .errors import InvalidArgumentError
from .security import DEFAULT_POLICY, SecurityPolicy

logger = logging.getLogger(__name__)

# --- Environment Variables ---
ENV_FOLLOW_REDIRECTS = "HTTPCONN_FOLLOW_REDIRECTS"
ENV_MAX_REDIRECTS = "HTTPCONN_MAX_REDIRECTS"
ENV_CONNECT_TIMEOUT = "HTTPCONN_CONNECT_TIMEOUT"
ENV_READ_TIMEOUT = "HTTPCONN_READ_TIMEOUT"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise InvalidArgumentError(f"{name} must be a boolean, got {raw!r}")


def _parse_number(name: str, raw: str, kind):
    try:
        value = kind(raw.strip())
    except ValueError:
        raise InvalidArgumentError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise InvalidArgumentError(f"{name} cannot be negative, got {raw!r}")
    return value


@dataclass
class ConnectionDefaults:
    """
    Defaults every new connection copies at construction time.

    Connections read these once, through ``snapshot()``, and never look at
    them again; later changes only affect connections created afterwards.
    """

    follow_redirects: bool = True
    max_redirects: int = 20
    connect_timeout: float | None = None
    read_timeout: float | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    @classmethod
    def from_env(cls, environ=None) -> "ConnectionDefaults":
        environ = os.environ if environ is None else environ
        defaults = cls()

        if ENV_FOLLOW_REDIRECTS in environ:
            defaults.follow_redirects = _parse_bool(ENV_FOLLOW_REDIRECTS, environ[ENV_FOLLOW_REDIRECTS])
        if ENV_MAX_REDIRECTS in environ:
            defaults.max_redirects = _parse_number(ENV_MAX_REDIRECTS, environ[ENV_MAX_REDIRECTS], int)
        if ENV_CONNECT_TIMEOUT in environ:
            defaults.connect_timeout = _parse_number(ENV_CONNECT_TIMEOUT, environ[ENV_CONNECT_TIMEOUT], float)
        if ENV_READ_TIMEOUT in environ:
            defaults.read_timeout = _parse_number(ENV_READ_TIMEOUT, environ[ENV_READ_TIMEOUT], float)

        return defaults

    def snapshot(self) -> "ConnectionDefaults":
        with self.lock:
            return dataclasses.replace(self)

    def set_follow_redirects(self, value: bool, policy: SecurityPolicy | None = None) -> None:
        policy = policy or DEFAULT_POLICY
        policy.check_set_factory()
        with self.lock:
            self.follow_redirects = bool(value)
        logger.warning("Default redirect policy changed: follow_redirects=%s", bool(value))


_process_defaults = ConnectionDefaults()


def process_defaults() -> ConnectionDefaults:
    return _process_defaults


def get_follow_redirects() -> bool:
    return _process_defaults.snapshot().follow_redirects


def set_follow_redirects(value: bool, policy: SecurityPolicy | None = None) -> None:
    """Changes the redirect default for every connection created from now on."""
    _process_defaults.set_follow_redirects(value, policy)
