"""
asgroll - re-image one auto scaling group instance and roll the fleet onto it
"""

__version__ = "0.1.0"

from .core import Deployer
from .errors import DeployerError

__all__ = ["Deployer", "DeployerError"]
