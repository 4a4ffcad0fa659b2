# expansion.py
from __future__ import annotations

from dataclasses import replace
from itertools import product
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping

from .conditions import _same, _text, evaluate
from .errors import InvalidDefinition
from .model import PLACEHOLDER_RE, JobInstance, JobTemplate, Step


def instance_id(name: str, binding: Mapping[str, Any]) -> str:
    """'test' for an empty binding, 'test (nightly, ubuntu)' otherwise."""
    if not binding:
        return name
    return f"{name} ({', '.join(_text(v) for v in binding.values())})"


def interpolate(text: str, binding: Mapping[str, Any]) -> str:
    # placeholders were checked against the declared axes at load time
    return PLACEHOLDER_RE.sub(lambda m: _text(binding[m.group(1)]), text)


def _matches(binding: Mapping[str, Any], entry: Mapping[str, Any]) -> bool:
    return all(k in binding and _same(binding[k], v) for k, v in entry.items())


def bindings(template: JobTemplate) -> List[Mapping[str, Any]]:
    """
    Cross product of the template axes, in declaration order with the
    rightmost axis varying fastest, minus `exclude`, plus `include`.
    """
    names = list(template.axes)
    out: List[Dict[str, Any]] = []
    for combo in product(*(template.axes[n] for n in names)):
        b = dict(zip(names, combo))
        if any(_matches(b, ex) for ex in template.exclude):
            continue
        out.append(b)

    for inc in template.include:
        b = {n: inc[n] for n in names}
        if not any(_matches(existing, b) for existing in out):
            out.append(b)

    return [MappingProxyType(b) for b in out]


def _resolve_steps(template: JobTemplate, binding: Mapping[str, Any]) -> tuple:
    steps: List[Step] = []
    for s in template.steps:
        if not evaluate(s.when, binding):
            continue
        steps.append(
            replace(
                s,
                run=interpolate(s.run, binding),
                env={k: interpolate(v, binding) for k, v in s.env.items()},
            )
        )
    return tuple(steps)


def expand(template: JobTemplate) -> List[JobInstance]:
    """Turn one template into its concrete job instances (deterministic order)."""
    instances: List[JobInstance] = []
    for b in bindings(template):
        instances.append(
            JobInstance(
                template=template,
                binding=b,
                id=instance_id(template.name, b),
                steps=_resolve_steps(template, b),
                env=MappingProxyType({k: interpolate(v, b) for k, v in template.env.items()}),
            )
        )
    return instances


def expand_all(templates: Iterable[JobTemplate]) -> List[JobInstance]:
    """
    Expand every template, preserving template order then per-template order.
    Raises InvalidDefinition if two instances end up with the same id.
    """
    instances: List[JobInstance] = []
    seen: Dict[str, str] = {}
    for t in templates:
        for inst in expand(t):
            if inst.id in seen:
                raise InvalidDefinition(
                    f"Duplicate job instance id: {inst.id!r}",
                    job=t.name,
                    details={"clashes_with_job": seen[inst.id]},
                )
            seen[inst.id] = t.name
            instances.append(inst)
    return instances
