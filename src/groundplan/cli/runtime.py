"""Wiring shared by CLI commands: settings, project config, store and handlers."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

from groundplan.config import ProjectConfig, Settings, get_settings, load_config
from groundplan.db.repositories import RunRepository
from groundplan.db.session import create_schema, dispose_engine, get_session_factory
from groundplan.graph import DesiredStateDocument, load_document
from groundplan.handlers import HandlerRegistry, InMemoryCloud, default_registry
from groundplan.reconciler import Reconciler
from groundplan.state import StateStore, create_state_store


@dataclass
class CliContext:
    settings: Settings
    project: ProjectConfig
    store: StateStore
    handlers: HandlerRegistry

    def scope(self, explicit: str | None) -> str:
        return explicit or self.settings.default_scope

    def load(
        self, document: str | Path, scope: str, environment: str | None = None
    ) -> DesiredStateDocument:
        """Load a document with the scope's overlay and variables applied."""
        return load_document(
            document,
            environment=environment or scope,
            variables=self.project.scope(scope).variables,
        )

    def reconciler(self, repository: RunRepository | None = None) -> Reconciler:
        return Reconciler(
            self.store,
            self.handlers,
            settings=self.settings,
            project=self.project,
            repository=repository,
        )


@asynccontextmanager
async def cli_context(config_path: str | None = None) -> AsyncIterator[CliContext]:
    settings = get_settings()
    project = load_config(config_path)
    store = create_state_store(settings)
    if settings.state_backend == "sql":
        await create_schema()
    try:
        yield CliContext(
            settings=settings,
            project=project,
            store=store,
            handlers=default_registry(
                project,
                http_timeout=settings.http_timeout,
                cloud=InMemoryCloud.load(settings.sim_state_path),
            ),
        )
    finally:
        if settings.state_backend == "sql":
            await dispose_engine()


@asynccontextmanager
async def run_repository(ctx: CliContext) -> AsyncIterator[RunRepository | None]:
    """Run history is only kept with the SQL backend."""
    if ctx.settings.state_backend != "sql":
        yield None
        return
    async with get_session_factory()() as session:
        yield RunRepository(session)
