"""
Pipeline definition models.
"""

from pydantic import BaseModel
from typing import Dict, Optional, Tuple

class FilterRule(BaseModel):
    """One `+:pattern` / `-:pattern` line of a trigger filter."""
    include: bool = True
    pattern: str

    class Config:
        frozen = True

    @classmethod
    def parse(cls, text: str) -> "FilterRule":
        text = text.strip()
        if text.startswith("+:"):
            return cls(include=True, pattern=text[2:].strip())
        if text.startswith("-:"):
            return cls(include=False, pattern=text[2:].strip())
        return cls(include=True, pattern=text)

    def __str__(self) -> str:
        return f"{'+' if self.include else '-'}:{self.pattern}"

class TriggerFilter(BaseModel):
    branches: Tuple[FilterRule, ...] = ()
    paths: Tuple[FilterRule, ...] = ()

    class Config:
        frozen = True

class ArtifactRule(BaseModel):
    """`source => target` artifact rule."""
    source: str
    target: Optional[str] = None

    class Config:
        frozen = True

    @classmethod
    def parse(cls, text: str) -> "ArtifactRule":
        source, sep, target = text.partition("=>")
        target = target.strip() if sep else ""
        return cls(source=source.strip(), target=target or None)

    @property
    def is_archive(self) -> bool:
        return bool(self.target) and self.target.endswith(".zip")

class StepSpec(BaseModel):
    name: str
    image: str
    script: str
    position: int
    env: Dict[str, str] = {}

    class Config:
        frozen = True

class PipelineDefinition(BaseModel):
    name: str
    description: str = ""
    steps: Tuple[StepSpec, ...]
    trigger: TriggerFilter = TriggerFilter()
    artifacts: Tuple[ArtifactRule, ...] = ()
    timeout_seconds: float = 1800
    env: Dict[str, str] = {}
    status_context: Optional[str] = None

    class Config:
        frozen = True
