"""Tests for the pipeline definition loader."""

import os

import pytest
from conveyor_controller.src.services.loader import (
    parse_pipelines,
    load_pipelines_file,
    validate_config,
    ConfigError,
)

EXAMPLE_FILE = os.path.join(os.path.dirname(__file__), "..", "..", "pipelines.yml")

def test_valid_pipeline():
    config = """
pipelines:
  - name: Tests
    timeout: 1800
    trigger:
      branches: |
        +:pull/*
        +:refs/heads/main
    artifacts: |
      coverage/** => coverage.zip
    steps:
      - name: Install Dependencies
        image: node:20-alpine
        script: npm ci
      - name: Run Unit Tests
        image: node:20-alpine
        commands:
          - npm run build
          - npm run test:unit
"""
    [result] = parse_pipelines(config)
    assert result.name == "Tests"
    assert len(result.steps) == 2
    assert result.steps[0].name == "Install Dependencies"
    assert result.steps[1].image == "node:20-alpine"
    assert result.steps[1].script == "npm run build && npm run test:unit"
    assert [s.position for s in result.steps] == [0, 1]
    assert [str(rule) for rule in result.trigger.branches] == ["+:pull/*", "+:refs/heads/main"]
    assert result.artifacts[0].source == "coverage/**"
    assert result.artifacts[0].target == "coverage.zip"
    assert result.timeout_seconds == 1800

def test_missing_steps():
    config = """
pipelines:
  - name: Bad Pipeline
"""
    with pytest.raises(ConfigError, match="must have 'steps'"):
        parse_pipelines(config)

def test_missing_step_name():
    config = """
pipelines:
  - name: Bad Pipeline
    steps:
      - image: node:18
        script: npm install
"""
    with pytest.raises(ConfigError, match="missing 'name'"):
        parse_pipelines(config)

def test_missing_step_image():
    config = """
pipelines:
  - name: Bad Pipeline
    steps:
      - name: Build
        script: npm install
"""
    with pytest.raises(ConfigError, match="missing 'image'"):
        parse_pipelines(config)

def test_empty_config():
    with pytest.raises(ConfigError, match="Empty"):
        parse_pipelines("")

def test_invalid_yaml():
    with pytest.raises(ConfigError, match="Invalid YAML"):
        parse_pipelines("pipelines: [")

def test_one_bad_pipeline_rejects_the_set():
    config = {
        "pipelines": [
            {"name": "Good", "steps": [{"name": "a", "image": "alpine", "script": "true"}]},
            {"name": "Bad", "steps": []},
        ]
    }
    with pytest.raises(ConfigError, match="at least one step"):
        validate_config(config)

def test_duplicate_names():
    step = {"name": "a", "image": "alpine", "script": "true"}
    config = {"pipelines": [{"name": "Lint", "steps": [step]}, {"name": "Lint", "steps": [step]}]}
    with pytest.raises(ConfigError, match="Duplicate"):
        validate_config(config)

def test_invalid_timeout():
    config = {"pipelines": [{"name": "Lint", "timeout": 0, "steps": [{"name": "a", "image": "alpine", "script": "true"}]}]}
    with pytest.raises(ConfigError, match="timeout"):
        validate_config(config)

def test_missing_file():
    with pytest.raises(ConfigError, match="Cannot read"):
        load_pipelines_file("/nonexistent/pipelines.yml")

def test_example_pipelines_file():
    definitions = load_pipelines_file(EXAMPLE_FILE)
    assert [d.name for d in definitions] == ["Tests", "Lint", "Build", "Mergify Validation"]

    mergify = definitions[-1]
    assert [str(rule) for rule in mergify.trigger.paths] == ["+:.mergify.yml"]
    assert mergify.timeout_seconds == 300
    assert mergify.steps[0].image == "python:3.11-alpine"
    script = mergify.steps[0].script
    assert script.index("mergify validate .mergify.yml") < script.index('echo "✅ Mergify configuration is valid!"')
