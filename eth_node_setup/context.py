"""
Shared state handed to every provisioning step.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .config import NodeConfig
from .downloads import ReleaseInstaller
from .runner import CommandRunner


@dataclass
class ProvisionContext:
    config: NodeConfig
    runner: CommandRunner
    installer: ReleaseInstaller
    config_path: Optional[str] = None
    # Services to enable (and start) at the end of the run, in order
    services: List[str] = field(default_factory=list)
    # Services enabled but deliberately left stopped
    deferred_services: List[str] = field(default_factory=list)
    installed_versions: Dict[str, str] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)

    @classmethod
    def create(cls, config: NodeConfig, runner: CommandRunner, config_path: Optional[str] = None,
               arch: Optional[Dict[str, str]] = None) -> 'ProvisionContext':
        return cls(config=config, runner=runner,
                   installer=ReleaseInstaller(runner, config, arch=arch),
                   config_path=config_path)

    def register_service(self, service: str, start: bool = True):
        target = self.services if start else self.deferred_services
        if service not in target:
            target.append(service)
