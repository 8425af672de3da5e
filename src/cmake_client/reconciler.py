"""Code model synchronization and selection tracking.

Every model update replaces all project and target objects. The user's
selection therefore lives in ``SelectionContext`` as plain names and is
resolved against the new objects after each update; object references are
never carried across a replacement.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field, ValidationError

from cmake_client.log import get_logger
from cmake_client.models import CMakeBaseModel


if TYPE_CHECKING:
    from collections.abc import Iterable

    from cmake_client.collaborators import StateStore
    from cmake_client.models import CacheValue, CodeModel, Project, Target


logger = get_logger(__name__)


class ProjectContext(CMakeBaseModel):
    current_target_name: str = ""


class SelectionContext(CMakeBaseModel):
    """Persisted selection, keyed by names."""

    current_project_name: str = ""
    current_build_type: str = "Debug"
    project_contexts: dict[str, ProjectContext] = Field(default_factory=dict)

    def for_project(self, project_name: str) -> ProjectContext:
        """Get the context of a project, creating it on first use."""
        return self.project_contexts.setdefault(project_name, ProjectContext())


class ModelReconciler:
    """Holds the current code model view and keeps the selection in sync with it."""

    def __init__(self, store: StateStore, key: str) -> None:
        self._store = store
        self._key = key
        self._context = self._load_context()

        self._model: CodeModel | None = None
        self._projects: list[Project] = []
        self._targets: list[Target] = []
        self._project_targets: dict[int, tuple[Project, list[Target]]] = {}
        self._target_projects: dict[int, tuple[Target, Project]] = {}
        self._project: Project | None = None
        self._target: Target | None = None
        self._cache: dict[str, CacheValue] = {}

    def _load_context(self) -> SelectionContext:
        data = self._store.get(self._key)
        if data is None:
            return SelectionContext()
        try:
            return SelectionContext.model_validate(data)
        except ValidationError:
            logger.warning("Discarding invalid selection context", key=self._key)
            return SelectionContext()

    def _save_context(self) -> None:
        self._store.update(self._key, self._context.model_dump(by_alias=True))

    @property
    def context(self) -> SelectionContext:
        return self._context

    @property
    def model(self) -> CodeModel | None:
        return self._model

    @property
    def projects(self) -> list[Project]:
        return self._projects

    @property
    def targets(self) -> list[Target]:
        """Targets of all projects of the active configuration."""
        return self._targets

    @property
    def cache(self) -> dict[str, CacheValue]:
        return self._cache

    @property
    def build_type(self) -> str:
        return self._context.current_build_type

    @build_type.setter
    def build_type(self, value: str) -> None:
        self._context.current_build_type = value
        self._save_context()

    @property
    def project(self) -> Project | None:
        return self._project

    @project.setter
    def project(self, value: Project | None) -> None:
        if value is None or not self.owns_project(value):
            logger.debug("Ignoring project outside of the current model")
            return
        self._project = value
        self._target = self._pick_target(value)
        self._update_context()

    @property
    def target(self) -> Target | None:
        return self._target

    @target.setter
    def target(self, value: Target | None) -> None:
        if value is None or id(value) not in self._target_projects:
            logger.debug("Ignoring target outside of the current model")
            return
        stored, project = self._target_projects[id(value)]
        if stored is not value:
            return
        self._target = value
        self._project = project
        self._update_context()

    @property
    def project_targets(self) -> list[Target]:
        return list(self._project.targets) if self._project else []

    @property
    def project_build_targets(self) -> list[Target]:
        """Targets of the current project that can be built."""
        return [t for t in self.project_targets if t.is_buildable]

    def owns_project(self, project: Project | None) -> bool:
        if project is None or id(project) not in self._project_targets:
            return False
        return self._project_targets[id(project)][0] is project

    def get_cache_value(self, key: str) -> CacheValue | None:
        return self._cache.get(key)

    def apply(self, model: CodeModel, cache: Iterable[CacheValue]) -> None:
        """Replace model, lookup maps, selection and cache in one step.

        Everything is computed into locals first and assigned at the end, so
        observers notified afterwards never see a mix of old and new state.
        """
        names = model.configuration_names
        build_type = self._context.current_build_type
        if build_type not in names and names:
            build_type = names[0]
        configuration = next((c for c in model.configurations if c.name == build_type), None)
        projects = list(configuration.projects) if configuration else []

        project_targets: dict[int, tuple[Project, list[Target]]] = {}
        target_projects: dict[int, tuple[Target, Project]] = {}
        targets: list[Target] = []
        for project in projects:
            project_targets[id(project)] = (project, project.targets)
            targets.extend(project.targets)
            for target in project.targets:
                target_projects[id(target)] = (target, project)

        current_project = None
        if projects:
            current_project = next(
                (p for p in projects if p.name == self._context.current_project_name),
                projects[0],
            )

        self._model = model
        self._projects = projects
        self._targets = targets
        self._project_targets = project_targets
        self._target_projects = target_projects
        self._project = current_project
        self._target = self._pick_target(current_project) if current_project else None
        self._cache = {value.key: value for value in cache}
        self._context.current_build_type = build_type
        # Remembered names are only overwritten by a resolved selection, so a
        # project or target missing from this model is found again later.
        if current_project is not None:
            self._context.current_project_name = current_project.name
            if self._target is not None:
                project_context = self._context.for_project(current_project.name)
                project_context.current_target_name = self._target.name
        self._save_context()
        logger.debug(
            "Code model applied",
            build_type=build_type,
            projects=len(projects),
            targets=len(targets),
            project=current_project.name if current_project else None,
            target=self._target.name if self._target else None,
        )

    def _pick_target(self, project: Project) -> Target | None:
        candidates = [t for t in project.targets if t.is_buildable]
        if not candidates:
            return None
        wanted = self._context.for_project(project.name).current_target_name
        return next((t for t in candidates if t.name == wanted), candidates[0])

    def _update_context(self) -> None:
        if self._project is not None:
            self._context.current_project_name = self._project.name
            project_context = self._context.for_project(self._project.name)
            project_context.current_target_name = self._target.name if self._target else ""
        else:
            self._context.current_project_name = ""
        self._save_context()
