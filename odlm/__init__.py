"""
Package exports
"""

# Local
from . import config, reconcile, status
from .controller import Controller
from .controllers import (
    OperandBindInfoController,
    OperandConfigController,
    OperandRegistryController,
    OperandRequestController,
)
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster, assert_config, assert_precondition
from .merge import merge_cr
from .reconcile import ReconcileManager, ReconciliationResult
from .references import is_delete_safe, operator_namespace_referents, referents
from .session import Session
