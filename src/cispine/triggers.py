"""Triggers — which events start a pipeline, and which release version they carry.

Pipelines react to four kinds of events:

- ``push`` to a branch (usually the default branch)
- ``pull_request`` targeting a branch
- ``tag`` push matching a semantic-version pattern (``v*.*.*``)
- ``dispatch``: a manual run with a required ``version`` input

Release pipelines (docker image, python wheel) derive the version they
publish from the event: the tag name for tag pushes, the ``version`` input
for manual dispatch. A malformed tag or version input is fatal
(:class:`~cispine.core.errors.InvalidVersionTagError`).

Example::

    event = Event.tag("v1.4.0")
    resolve_release_version(event)              # "1.4.0"
    matching_pipelines(registry, "main", event) # [docker-image, python-wheel]
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from types import MappingProxyType
from typing import Any

from cispine.core.errors import MissingParameterError
from cispine.core.logging import get_logger
from cispine.models import PipelineDefinition, TriggerEvent, TriggerSpec
from cispine.registry import PipelineRegistry
from cispine.versioning import strip_tag_prefix

logger = get_logger(__name__)

HEADS_PREFIX = "refs/heads/"
TAGS_PREFIX = "refs/tags/"
VERSION_INPUT = "version"


@dataclass(frozen=True)
class Event:
    """An incoming CI event.

    Attributes:
        kind: push, pull_request, tag, or dispatch
        ref: Branch or tag the event concerns (``refs/...`` prefixes allowed);
            for pull requests, the target branch
        inputs: Manual dispatch inputs
    """

    kind: TriggerEvent
    ref: str = ""
    inputs: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", TriggerEvent(self.kind))
        object.__setattr__(self, "inputs", MappingProxyType(dict(self.inputs)))

    @classmethod
    def push(cls, branch: str) -> Event:
        return cls(TriggerEvent.PUSH, ref=branch)

    @classmethod
    def pull_request(cls, target_branch: str) -> Event:
        return cls(TriggerEvent.PULL_REQUEST, ref=target_branch)

    @classmethod
    def tag(cls, tag: str) -> Event:
        return cls(TriggerEvent.TAG, ref=tag)

    @classmethod
    def dispatch(cls, **inputs: Any) -> Event:
        return cls(TriggerEvent.DISPATCH, inputs=inputs)

    @classmethod
    def from_ref(cls, ref: str) -> Event:
        """Build a push or tag event from a full git ref."""
        if ref.startswith(TAGS_PREFIX):
            return cls.tag(ref)
        return cls.push(ref)

    @property
    def short_ref(self) -> str:
        """The ref without ``refs/heads/`` or ``refs/tags/``."""
        for prefix in (HEADS_PREFIX, TAGS_PREFIX):
            if self.ref.startswith(prefix):
                return self.ref[len(prefix):]
        return self.ref


def trigger_matches(trigger: TriggerSpec, event: Event) -> bool:
    """Whether *trigger* fires for *event*. Empty filters match anything."""
    if trigger.event != event.kind:
        return False
    if event.kind in (TriggerEvent.PUSH, TriggerEvent.PULL_REQUEST):
        return not trigger.branches or any(fnmatchcase(event.short_ref, b) for b in trigger.branches)
    if event.kind == TriggerEvent.TAG:
        return not trigger.tags or any(fnmatchcase(event.short_ref, t) for t in trigger.tags)
    # dispatch: every declared input must be supplied and non-empty
    return all(str(event.inputs.get(name, "")).strip() for name in trigger.inputs)


def pipeline_triggered(definition: PipelineDefinition, event: Event) -> bool:
    return any(trigger_matches(t, event) for t in definition.triggers)


def matching_pipelines(
    registry: PipelineRegistry,
    version_ref: str,
    event: Event,
) -> list[PipelineDefinition]:
    """Definitions published under *version_ref* whose triggers fire for *event*."""
    matched = []
    for name in registry.list_pipelines():
        if not registry.exists(name, version_ref):
            continue
        definition = registry.resolve(name, version_ref)
        if pipeline_triggered(definition, event):
            matched.append(definition)
    logger.debug(
        "triggers.matched",
        trigger=event.kind.value,
        ref=event.ref,
        pipelines=[d.name for d in matched],
    )
    return matched


def resolve_release_version(event: Event) -> str | None:
    """
    The release version carried by *event*, without the ``v`` prefix.

    Returns ``None`` for push and pull-request events, which do not
    publish releases.

    Raises:
        InvalidVersionTagError: Malformed tag or version input
        MissingParameterError: Dispatch without a ``version`` input
    """
    if event.kind == TriggerEvent.TAG:
        return strip_tag_prefix(event.short_ref)
    if event.kind == TriggerEvent.DISPATCH:
        raw = str(event.inputs.get(VERSION_INPUT, "")).strip()
        if not raw:
            raise MissingParameterError(VERSION_INPUT)
        return strip_tag_prefix(raw if raw.startswith("v") else f"v{raw}")
    return None
