"""
Models for container settings passed to, and records read back from, the
container management tool.
"""
from typing import Dict, Optional
from pydantic import BaseModel

DEFAULT_NET0 = "name=eth0,bridge=vmbr0,ip=dhcp,type=veth"


class ContainerConfig(BaseModel):
    """
    Settings used when creating or reconfiguring a container.
    Zero or None means "leave the tool's default".
    """
    hostname: Optional[str] = None
    memory: int = 0
    swap: int = 0
    cores: int = 0
    storage: Optional[str] = None
    net0: str = DEFAULT_NET0
    unprivileged: Optional[bool] = None
    onboot: bool = False
    tags: Optional[str] = None
    environment: Dict[str, str] = {}


class ContainerInfo(BaseModel):
    """
    One row of the tool's container listing.
    """
    vmid: int
    status: str
    name: str = ""
    lock: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.status == "running"
