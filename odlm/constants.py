"""
Shared module to hold constant values for the library
"""

# API group and version shared by all four ODLM kinds
GROUP = "operator.ibm.com"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"

KIND_OPERAND_REGISTRY = "OperandRegistry"
KIND_OPERAND_CONFIG = "OperandConfig"
KIND_OPERAND_REQUEST = "OperandRequest"
KIND_OPERAND_BIND_INFO = "OperandBindInfo"

# Operator lifecycle manager kinds
OLM_API_VERSION = "operators.coreos.com/v1alpha1"
KIND_SUBSCRIPTION = "Subscription"
KIND_CSV = "ClusterServiceVersion"

# Annotation on a ClusterServiceVersion holding the example resources as a
# JSON array
ALM_EXAMPLES_ANNOTATION = "alm-examples"

# Labels stamped on every resource created for an OperandRequest
OPREQ_CONTROL_LABEL = f"{GROUP}/opreq-control"
OPERAND_LABEL = f"{GROUP}/operand"

# Binding scope key that allows cross-namespace replication
SCOPE_PUBLIC = "public"
SCOPE_PRIVATE = "private"

# Operator install modes
INSTALL_MODE_NAMESPACE = "namespace"
INSTALL_MODE_CLUSTER = "cluster"

# Reconciliation configuration annotations
PAUSE_ANNOTATION_NAME = f"{GROUP}/pause-execution"

# Log config annotations
LOG_DEFAULT_LEVEL_NAME = f"{GROUP}/log-default-level"
LOG_FILTERS_NAME = f"{GROUP}/log-filters"
LOG_THREAD_ID_NAME = f"{GROUP}/log-thread-id"
LOG_JSON_NAME = f"{GROUP}/log-json"

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."
