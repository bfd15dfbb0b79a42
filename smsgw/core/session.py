"""Bearer credential storage and the unauthorized-session hook."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path

LOGGER = logging.getLogger(__name__)


def _token_path() -> Path:
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_data / "smsgw/token"


class TokenStore:
    """File-backed bearer token, overridable by ``SMSGW_TOKEN``."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or _token_path()

    def get(self) -> str | None:
        env_token = os.environ.get("SMSGW_TOKEN", "").strip()
        if env_token:
            return env_token
        try:
            token = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return token or None

    def set(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(token.strip() + "\n", encoding="utf-8")
        self.path.chmod(0o600)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class Session:
    """Holds the credential and the login entry point used on 401.

    ``on_login_required`` is called right after the stored credential is
    cleared. Unauthorized responses that arrive while the session is already
    expired (overlapping requests, polls) are ignored until a credential is
    available again.
    """

    def __init__(
        self,
        tokens: TokenStore | None = None,
        *,
        on_login_required: Callable[[], None] | None = None,
    ) -> None:
        self.tokens = tokens or TokenStore()
        self.on_login_required = on_login_required
        self.expired = False

    def authorization(self) -> dict[str, str]:
        token = self.tokens.get()
        if not token:
            return {}
        self.expired = False
        return {"Authorization": f"Bearer {token}"}

    def expire(self) -> None:
        if self.expired:
            return
        self.expired = True
        LOGGER.warning("Session expired, clearing stored credential")
        self.tokens.clear()
        if self.on_login_required is not None:
            self.on_login_required()
