# src/sitewatch/tasks/registry.py

from __future__ import annotations

"""
Task registry.

Tasks are registered explicitly (slug -> factory) at process start; there is
no module discovery. Loading splits the registered tasks into those that have
a section in the config file and those that don't. Only the former are ever
scheduled; the latter are reported at boot.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace

from ..errors import ConfigError
from .builtin import pagewatch
from .task_models import TaskDescriptor, TaskFactory

logger = logging.getLogger(__name__)

# Tasks shipped with sitewatch. Extra plugins are added with TaskRegistry.register().
BUILTIN_TASKS: dict[str, TaskFactory] = {
    pagewatch.SLUG: pagewatch.create_task,
}


@dataclass(slots=True, frozen=True)
class LoadedTasks:
    with_config: tuple[TaskDescriptor, ...]
    without_config: tuple[TaskDescriptor, ...]

    def get(self, slug: str) -> TaskDescriptor | None:
        for task in self.with_config:
            if task.slug == slug:
                return task
        return None

    def only(self, slug: str) -> LoadedTasks:
        """Single-task testing mode: keep just this configured task."""
        task = self.get(slug)
        if task is None:
            raise ConfigError(f"Could not find a configured task: {slug}")
        return replace(self, with_config=(task,))


class TaskRegistry:
    def __init__(self, factories: Mapping[str, TaskFactory] | None = None) -> None:
        self._factories: dict[str, TaskFactory] = {}
        self._tasks: dict[str, TaskDescriptor] = {}
        for slug, factory in (factories or {}).items():
            self.register(slug, factory)

    def register(self, slug: str, factory: TaskFactory) -> None:
        if slug in self._factories:
            raise ValueError(f"Task already registered: {slug}")
        self._factories[slug] = factory

    def slugs(self) -> list[str]:
        return list(self._factories)

    def build(self, slug: str) -> TaskDescriptor:
        """Instantiate (once) and return the descriptor for a registered slug."""
        task = self._tasks.get(slug)
        if task is not None:
            return task

        factory = self._factories.get(slug)
        if factory is None:
            raise KeyError(slug)

        task = factory()
        if task.slug != slug:
            raise ValueError(f"Task factory for {slug!r} produced slug {task.slug!r}")
        self._tasks[slug] = task
        return task

    def get(self, slug: str) -> TaskDescriptor | None:
        if slug not in self._factories:
            return None
        return self.build(slug)

    def config_templates(self) -> dict[str, dict]:
        return {slug: dict(self.build(slug).config_template) for slug in self._factories}

    def load(
        self,
        task_sources: Iterable[str] | None,
        configured_namespaces: Iterable[str],
    ) -> LoadedTasks:
        """
        Split tasks into (with config, without config), preserving discovery order.

        task_sources: slugs to consider (None = every registered task).
        configured_namespaces: slugs that have a section in the config file.
        """
        configured = set(configured_namespaces)
        sources = list(self._factories) if task_sources is None else list(task_sources)

        with_config: list[TaskDescriptor] = []
        without_config: list[TaskDescriptor] = []
        for slug in sources:
            task = self.get(slug)
            if task is None:
                logger.warning("Unknown task %r ignored (not registered).", slug)
                continue
            if slug in configured:
                with_config.append(task)
            else:
                without_config.append(task)

        for slug in sorted(configured - set(sources)):
            logger.warning("Config has a section for unknown task %r.", slug)

        return LoadedTasks(with_config=tuple(with_config), without_config=tuple(without_config))


def default_registry() -> TaskRegistry:
    return TaskRegistry(BUILTIN_TASKS)
