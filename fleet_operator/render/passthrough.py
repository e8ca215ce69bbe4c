"""Renders a fixed list of manifests unchanged"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .base import Component, RenderResult


@dataclass
class PassthroughConfiguration:
    to_create: List[Dict[str, Any]] = field(default_factory=list)
    to_delete: List[Dict[str, Any]] = field(default_factory=list)


class PassthroughComponent(Component):

    def __init__(self, config: PassthroughConfiguration):
        super().__init__()
        self.config = config

    def objects(self) -> RenderResult:
        return RenderResult.build(self.config.to_create, self.config.to_delete)
