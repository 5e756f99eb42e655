"""Shared helpers for API-level tests."""

import asyncio
from pathlib import Path
from typing import Optional

from agenthub.auth.github import GitHubUser
from agenthub.auth.oauth import ProviderExchangeError
from agenthub.config import get_settings
from agenthub.db import Base, dispose_engine
from agenthub.db.database import get_engine


def setup_db(tmp_path: Path, monkeypatch, name: str = "agenthub_test.db"):
    db_path = tmp_path / name
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path.as_posix()}")
    get_settings.cache_clear()
    dispose_engine()
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    return engine


class FakeGitHubClient:
    """Stands in for GitHubOAuthClient; records what the handler sent."""

    provider = "github"

    def __init__(
        self,
        user: Optional[GitHubUser] = None,
        exchange_error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.user = user or GitHubUser(
            id=4242,
            login="octo",
            name="Octo Cat",
            avatar_url="https://avatars.example/u/4242",
            html_url="https://github.com/octo",
        )
        self.exchange_error = exchange_error
        self.delay = delay
        self.exchanges: list[dict] = []
        self.closed = False

    async def exchange_code(self, code: str, redirect_uri: str, code_verifier: str = "") -> str:
        self.exchanges.append(
            {"code": code, "redirect_uri": redirect_uri, "code_verifier": code_verifier}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exchange_error is not None:
            raise self.exchange_error
        return "gho_faketoken"

    async def fetch_user(self, access_token: str) -> GitHubUser:
        if access_token != "gho_faketoken":
            raise ProviderExchangeError("unexpected token")
        return self.user

    async def aclose(self) -> None:
        self.closed = True
