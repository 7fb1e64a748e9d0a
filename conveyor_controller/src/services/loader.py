"""
Pipeline definition loader and validator.
"""

import yaml
from typing import List, Dict, Any, Optional, Union

from conveyor_controller.src.models.pipeline import (
    ArtifactRule,
    FilterRule,
    PipelineDefinition,
    StepSpec,
    TriggerFilter,
)

DEFAULT_TIMEOUT = 1800  # 30 min, per pipeline

class ConfigError(Exception):
    """Raised when a pipeline definition set is invalid."""
    pass

def load_pipelines_file(path: str) -> List[PipelineDefinition]:
    """Load pipeline definitions from a YAML file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}")

    return parse_pipelines(content)

def parse_pipelines(yaml_content: str) -> List[PipelineDefinition]:
    """Parse pipeline definitions from a YAML string."""
    try:
        config = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}")

    return validate_config(config)

def validate_config(config: Optional[Dict[str, Any]]) -> List[PipelineDefinition]:
    """Validate the whole definition set. One bad pipeline rejects all of them."""
    if not config:
        raise ConfigError("Empty pipeline configuration")

    if not isinstance(config, dict):
        raise ConfigError("Pipeline configuration must be a dictionary")

    if "pipelines" not in config:
        raise ConfigError("Configuration must have 'pipelines' defined")

    pipelines = config["pipelines"]
    if not isinstance(pipelines, list) or len(pipelines) == 0:
        raise ConfigError("'pipelines' must be a non-empty list")

    definitions = []
    seen = set()
    for i, pipeline in enumerate(pipelines):
        definition = validate_pipeline(pipeline, i)
        if definition.name in seen:
            raise ConfigError(f"Duplicate pipeline name '{definition.name}'")
        seen.add(definition.name)
        definitions.append(definition)

    return definitions

def validate_pipeline(pipeline: Dict[str, Any], index: int) -> PipelineDefinition:
    """Validate a single pipeline definition."""
    if not isinstance(pipeline, dict):
        raise ConfigError(f"Pipeline {index} must be a dictionary")

    name = pipeline.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"Pipeline {index} missing 'name'")

    if "steps" not in pipeline:
        raise ConfigError(f"Pipeline '{name}' must have 'steps' defined")

    steps = pipeline["steps"]
    if not isinstance(steps, list):
        raise ConfigError(f"Pipeline '{name}' 'steps' must be a list")

    if len(steps) == 0:
        raise ConfigError(f"Pipeline '{name}' must have at least one step")

    timeout = pipeline.get("timeout", DEFAULT_TIMEOUT)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError(f"Pipeline '{name}' 'timeout' must be a positive number of seconds")

    trigger = pipeline.get("trigger") or {}
    if not isinstance(trigger, dict):
        raise ConfigError(f"Pipeline '{name}' 'trigger' must be a dictionary")

    context = pipeline.get("status_context")
    if context is not None and not isinstance(context, str):
        raise ConfigError(f"Pipeline '{name}' 'status_context' must be a string")

    return PipelineDefinition(
        name=name,
        description=str(pipeline.get("description", "")),
        steps=tuple(validate_step(step, i, name) for i, step in enumerate(steps)),
        trigger=TriggerFilter(
            branches=parse_rules(trigger.get("branches"), name, "branches"),
            paths=parse_rules(trigger.get("paths"), name, "paths"),
        ),
        artifacts=parse_artifact_rules(pipeline.get("artifacts"), name),
        timeout_seconds=timeout,
        env=validate_env(pipeline.get("env", {}), f"Pipeline '{name}'"),
        status_context=context,
    )

def validate_step(step: Dict[str, Any], index: int, pipeline: str) -> StepSpec:
    """Validate a single pipeline step."""
    where = f"Pipeline '{pipeline}' step {index}"
    if not isinstance(step, dict):
        raise ConfigError(f"{where} must be a dictionary")

    # Required fields
    if "name" not in step:
        raise ConfigError(f"{where} missing 'name'")

    if "image" not in step:
        raise ConfigError(f"{where} missing 'image'")

    if "script" not in step and "commands" not in step:
        raise ConfigError(f"{where} missing 'script' or 'commands'")

    # Validate types
    if not isinstance(step["name"], str):
        raise ConfigError(f"{where} 'name' must be a string")

    if not isinstance(step["image"], str):
        raise ConfigError(f"{where} 'image' must be a string")

    if "script" in step:
        if not isinstance(step["script"], str) or not step["script"].strip():
            raise ConfigError(f"{where} 'script' must be a non-empty string")
        script = step["script"]
    else:
        commands = step["commands"]
        if not isinstance(commands, list) or not commands:
            raise ConfigError(f"{where} 'commands' must be a non-empty list")
        for j, cmd in enumerate(commands):
            if not isinstance(cmd, str):
                raise ConfigError(f"{where} command {j} must be a string")
        # Join commands with && so the step fails fast on error
        script = " && ".join(commands)

    return StepSpec(
        name=step["name"],
        image=step["image"],
        script=script,
        position=index,
        env=validate_env(step.get("env", {}), where),
    )

def parse_rules(rules: Union[str, List[str], None], pipeline: str, field: str):
    """Accept a multi-line TeamCity style filter or a list of rules."""
    if rules is None:
        return ()
    if isinstance(rules, str):
        rules = rules.splitlines()
    if not isinstance(rules, list):
        raise ConfigError(f"Pipeline '{pipeline}' trigger '{field}' must be a string or a list")

    parsed = []
    for rule in rules:
        if not isinstance(rule, str):
            raise ConfigError(f"Pipeline '{pipeline}' trigger '{field}' entries must be strings")
        if not rule.strip():
            continue
        parsed_rule = FilterRule.parse(rule)
        if not parsed_rule.pattern:
            raise ConfigError(f"Pipeline '{pipeline}' has an empty {field} pattern: '{rule}'")
        parsed.append(parsed_rule)
    return tuple(parsed)

def parse_artifact_rules(rules: Union[str, List[str], None], pipeline: str):
    if rules is None:
        return ()
    if isinstance(rules, str):
        rules = rules.splitlines()
    if not isinstance(rules, list):
        raise ConfigError(f"Pipeline '{pipeline}' 'artifacts' must be a string or a list")

    parsed = []
    for rule in rules:
        if not isinstance(rule, str):
            raise ConfigError(f"Pipeline '{pipeline}' artifact rules must be strings")
        if not rule.strip():
            continue
        artifact = ArtifactRule.parse(rule)
        if not artifact.source:
            raise ConfigError(f"Pipeline '{pipeline}' artifact rule '{rule}' has no source")
        parsed.append(artifact)
    return tuple(parsed)

def validate_env(env: Any, where: str) -> Dict[str, str]:
    if not isinstance(env, dict):
        raise ConfigError(f"{where} 'env' must be a dictionary")
    return {str(key): str(value) for key, value in env.items()}
