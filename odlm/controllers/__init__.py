"""
Controllers for the four ODLM custom resource kinds
"""

# Local
from .bindinfo import OperandBindInfoController
from .config import OperandConfigController
from .registry import OperandRegistryController
from .request import OperandRequestController
