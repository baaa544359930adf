"""
pipeline.py
===========
Ordered, dependency-checked list of named processing steps.

A step is an opaque transformation `query(context, relation) -> relation`
plus the names of the steps whose output it reads. The pipeline never looks
inside a step; it only enforces the name-based dependency edges:

  - a step may only depend on steps placed before it
  - a step cannot be removed while a later step still depends on it,
    directly or through another step
  - rejected mutations leave the step list untouched

Default chain (see processing_steps.py):

    sessions_with_source_medium_and_lp -> sessions_with_channel
                                       -> sessions_with_last_non_direct
"""

import logging
import time

from config.config_loader import ConfigurationError

logger = logging.getLogger(__name__)


class DependencyViolation(Exception):
    """Raised when a step mutation would break a declared dependency."""
    pass


class ProcessingStep:

    def __init__(self, name: str, query, depends_on=()):
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError("A processing step needs a non-empty name")
        if not callable(query):
            raise ConfigurationError(f"Processing step '{name}' needs a callable query")
        self.name = name
        self.query = query
        self.depends_on = tuple(depends_on)

    def __repr__(self):
        return f"ProcessingStep({self.name!r}, depends_on={list(self.depends_on)})"


class Pipeline:

    def __init__(self, steps=()):
        self._steps = []
        for step in steps:
            self.insert(step)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def steps(self) -> tuple:
        return tuple(self._steps)

    @property
    def names(self) -> list:
        return [step.name for step in self._steps]

    def __contains__(self, name) -> bool:
        return name in self.names

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self):
        return iter(self._steps)

    def copy(self) -> "Pipeline":
        clone = Pipeline()
        clone._steps = list(self._steps)
        return clone

    def dependents_of(self, name: str) -> list:
        """Names of later steps that read `name`, directly or transitively."""
        if name not in self:
            return []
        index = self.names.index(name)
        blocked = {name}
        dependents = []
        for step in self._steps[index + 1:]:
            if blocked.intersection(step.depends_on):
                dependents.append(step.name)
                blocked.add(step.name)
        return dependents

    # ------------------------------------------------------------------ #
    # Mutation
    # ------------------------------------------------------------------ #

    def remove(self, name: str) -> None:
        """
        Drop a step by name.

        Raises:
            DependencyViolation: a later step still depends on it.
        """
        if name not in self:
            logger.warning("Processing step '%s' is not in the pipeline; nothing to remove.", name)
            return
        dependents = self.dependents_of(name)
        if dependents:
            raise DependencyViolation(
                f"Step '{name}' can't be removed as it's required by following steps: "
                f"{', '.join(dependents)}. Remove those steps first."
            )
        self._steps = [step for step in self._steps if step.name != name]
        logger.info("Processing step removed: %s | Remaining: %s", name, self.names)

    def insert(self, step: ProcessingStep, before: str = None, after: str = None) -> None:
        """
        Add a step at the end, or before / after a named step.

        Raises:
            ConfigurationError: duplicate name or unknown anchor step.
            DependencyViolation: a dependency is missing or would come later.
        """
        if not isinstance(step, ProcessingStep):
            raise ConfigurationError(f"Expected a ProcessingStep, got {step!r}")
        if step.name in self:
            raise ConfigurationError(f"Processing step '{step.name}' is already in the pipeline")
        if before is not None and after is not None:
            raise ConfigurationError("Pass either 'before' or 'after', not both")

        names = self.names
        if before is not None:
            if before not in names:
                raise ConfigurationError(f"Unknown processing step '{before}'")
            position = names.index(before)
        elif after is not None:
            if after not in names:
                raise ConfigurationError(f"Unknown processing step '{after}'")
            position = names.index(after) + 1
        else:
            position = len(names)

        upstream = set(names[:position])
        missing = [dep for dep in step.depends_on if dep not in upstream]
        if missing:
            raise DependencyViolation(
                f"Step '{step.name}' depends on {missing}, which must run before it."
            )
        downstream_needs = [s.name for s in self._steps[:position] if step.name in s.depends_on]
        if downstream_needs:
            raise DependencyViolation(
                f"Steps {downstream_needs} depend on '{step.name}' but would run before it."
            )
        self._steps.insert(position, step)

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    def execute(self, context, relation):
        """
        Run every step in order, threading the relation through.

        With no steps the input relation is returned unchanged.
        """
        for step in self._steps:
            start_ts = time.time()
            relation = step.query(context, relation)
            logger.info(
                "Step %-36s -> %d row(s) in %.3fs",
                step.name, len(relation), time.time() - start_ts,
            )
        return relation
