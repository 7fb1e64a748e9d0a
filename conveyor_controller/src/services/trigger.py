"""
Trigger evaluation - decides which pipelines a VCS event starts.
"""

import re
from functools import lru_cache
from typing import Iterable, List, Optional

from conveyor_controller.src.models.pipeline import FilterRule, PipelineDefinition
from conveyor_controller.src.models.run import TriggerEvent

PULL_REF = re.compile(r"^refs/pull/(?P<number>[^/]+)/(head|merge)$")

def branch_names(ref: str) -> List[str]:
    """
    Names a ref is matched under: the full ref and its logical branch name.
    refs/heads/main -> main, refs/pull/12/head -> pull/12
    """
    names = [ref]
    if ref.startswith("refs/heads/"):
        names.append(ref[len("refs/heads/"):])
    elif ref.startswith("refs/tags/"):
        names.append(ref[len("refs/tags/"):])
    else:
        match = PULL_REF.match(ref)
        if match:
            names.append(f"pull/{match.group('number')}")
    return names

@lru_cache(maxsize=1024)
def compile_branch_pattern(pattern: str) -> re.Pattern:
    # Only '*' is a wildcard in branch patterns and it crosses '/'
    parts = [re.escape(part) for part in pattern.split("*")]
    return re.compile(".*".join(parts))

@lru_cache(maxsize=1024)
def compile_path_pattern(pattern: str) -> re.Pattern:
    regex = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            regex.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            regex.append(".*")
            i += 2
        elif pattern[i] == "*":
            regex.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            regex.append("[^/]")
            i += 1
        else:
            regex.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(regex))

def rules_match(rules: Iterable[FilterRule], candidates: List[str], compile_pattern) -> bool:
    """
    Last matching rule wins. Without a match the candidate is excluded if the
    filter has any include rule, and included if it only excludes.
    """
    rules = list(rules)
    if not rules:
        return True

    for rule in reversed(rules):
        regex = compile_pattern(rule.pattern)
        if any(regex.fullmatch(candidate) for candidate in candidates):
            return rule.include

    return not any(rule.include for rule in rules)

def ref_matches(definition: PipelineDefinition, ref: str) -> bool:
    return rules_match(definition.trigger.branches, branch_names(ref), compile_branch_pattern)

def ref_monitored(ref: str, rules: Iterable[FilterRule]) -> bool:
    """Whether the repository-wide branch spec lets events for `ref` in at all."""
    return rules_match(rules, [ref], compile_branch_pattern)

def paths_match(definition: PipelineDefinition, changed_paths: Optional[Iterable[str]]) -> bool:
    rules = definition.trigger.paths
    if not rules:
        return True

    # Path rules need the change set; an event without one cannot satisfy them
    if changed_paths is None:
        return False

    return any(
        rules_match(rules, [path.lstrip("/")], compile_path_pattern)
        for path in changed_paths
    )

def needs_changed_paths(definitions: Iterable[PipelineDefinition]) -> bool:
    return any(definition.trigger.paths for definition in definitions)

def evaluate(event: TriggerEvent, definitions: Iterable[PipelineDefinition]) -> List[PipelineDefinition]:
    """Return the definitions whose trigger filter the event satisfies."""
    return [
        definition
        for definition in definitions
        if ref_matches(definition, event.ref) and paths_match(definition, event.changed_paths)
    ]
