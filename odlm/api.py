"""
Read-only views over the four ODLM custom resources. The views never copy the
underlying manifest; everything below spec is an untyped nested mapping since
operand resource kinds are only known by name at runtime.
"""

# Standard
from typing import Any, Dict, Iterator, List, Optional, Tuple

# Local
from . import constants


class ResourceView:
    """Basic accessors shared by every kubernetes object view"""

    kind = None

    def __init__(self, manifest: dict):
        self.manifest = manifest
        self.metadata = manifest.get("metadata") or {}
        assert self.metadata.get("name"), "No name found"

    @property
    def name(self) -> str:
        return self.metadata["name"]

    @property
    def namespace(self) -> Optional[str]:
        return self.metadata.get("namespace")

    @property
    def uid(self) -> Optional[str]:
        return self.metadata.get("uid")

    @property
    def spec(self) -> dict:
        return self.manifest.get("spec") or {}

    @property
    def status(self) -> dict:
        return self.manifest.get("status") or {}

    @property
    def deleting(self) -> bool:
        """True once the object has been marked for deletion"""
        return bool(self.metadata.get("deletionTimestamp"))

    def get(self, *args, **kwargs):
        """Pass get calls to the manifest"""
        return self.manifest.get(*args, **kwargs)

    def __str__(self):
        return f"{self.kind or self.manifest.get('kind')}/{self.namespace}/{self.name}"

    def __repr__(self):
        return str(self)


## OperandRegistry #############################################################


class Operator:
    """One operator declared in an OperandRegistry"""

    def __init__(self, entry: dict):
        self.entry = entry
        self.name = entry.get("name")
        self.namespace = entry.get("namespace")
        self.source_name = entry.get("sourceName")
        self.source_namespace = entry.get("sourceNamespace")
        self.package_name = entry.get("packageName")
        self.channel = entry.get("channel")
        self.description = entry.get("description", "")

    @property
    def install_mode(self) -> str:
        return self.entry.get("installMode") or constants.INSTALL_MODE_NAMESPACE

    @property
    def scope(self) -> str:
        return self.entry.get("scope") or constants.SCOPE_PRIVATE

    @property
    def is_private(self) -> bool:
        return self.scope != constants.SCOPE_PUBLIC


class OperandRegistry(ResourceView):
    """View over an OperandRegistry"""

    kind = constants.KIND_OPERAND_REGISTRY

    @property
    def operators(self) -> List[Operator]:
        return [Operator(entry) for entry in self.spec.get("operators") or []]

    def get_operator(self, name: str) -> Optional[Operator]:
        for operator in self.operators:
            if operator.name == name:
                return operator
        return None

    @property
    def operators_status(self) -> Dict[str, dict]:
        return self.status.get("operatorsStatus") or {}


## OperandConfig ###############################################################


class ConfigService:
    """One service entry of an OperandConfig"""

    def __init__(self, entry: dict):
        self.entry = entry
        self.name = entry.get("name")
        self.state = entry.get("state")

    @property
    def spec(self) -> Dict[str, Any]:
        """Map from resource kind to the JSON configuration for that kind"""
        return self.entry.get("spec") or {}

    def match_kind(self, kind: str) -> Optional[Tuple[str, Any]]:
        """Find the configuration for a resource kind. Kind names are compared
        case-insensitively since the configuration keys are usually written in
        lower camel case.
        """
        for spec_kind, spec in self.spec.items():
            if spec_kind.lower() == (kind or "").lower():
                return spec_kind, spec
        return None


class OperandConfig(ResourceView):
    """View over an OperandConfig"""

    kind = constants.KIND_OPERAND_CONFIG

    @property
    def services(self) -> List[ConfigService]:
        return [ConfigService(entry) for entry in self.spec.get("services") or []]

    def get_service(self, name: str) -> Optional[ConfigService]:
        for service in self.services:
            if service.name == name:
                return service
        return None


## OperandRequest ##############################################################


class Operand:
    """One operand named in a request entry"""

    def __init__(self, entry: dict):
        self.entry = entry
        self.name = entry.get("name")

    @property
    def bindings(self) -> Dict[str, dict]:
        return self.entry.get("bindings") or {}


class RequestEntry:
    """One registry reference of an OperandRequest together with its operands"""

    def __init__(self, entry: dict, default_namespace: str):
        self.entry = entry
        self._default_namespace = default_namespace
        self.registry = entry.get("registry")
        self.description = entry.get("description", "")

    @property
    def registry_namespace(self) -> str:
        return self.entry.get("registryNamespace") or self._default_namespace

    @property
    def operands(self) -> List[Operand]:
        return [Operand(entry) for entry in self.entry.get("operands") or []]

    def get_operand(self, name: str) -> Optional[Operand]:
        for operand in self.operands:
            if operand.name == name:
                return operand
        return None


class OperandRequest(ResourceView):
    """View over an OperandRequest"""

    kind = constants.KIND_OPERAND_REQUEST

    @property
    def requests(self) -> List[RequestEntry]:
        return [
            RequestEntry(entry, self.namespace)
            for entry in self.spec.get("requests") or []
        ]

    def iter_operands(self) -> Iterator[Tuple[RequestEntry, Operand]]:
        """Walk every (request entry, operand) pair in declaration order"""
        for request in self.requests:
            for operand in request.operands:
                yield request, operand

    def find_operand(
        self,
        name: str,
        registry: Optional[str] = None,
        registry_namespace: Optional[str] = None,
    ) -> Optional[Tuple[RequestEntry, Operand]]:
        """Find the first entry naming the operand, optionally restricted to a
        registry
        """
        for request, operand in self.iter_operands():
            if operand.name != name:
                continue
            if registry is not None and request.registry != registry:
                continue
            if (
                registry_namespace is not None
                and request.registry_namespace != registry_namespace
            ):
                continue
            return request, operand
        return None

    @property
    def members(self) -> List[dict]:
        return self.status.get("members") or []


## OperandBindInfo #############################################################


def is_public_binding(scope_key: str) -> bool:
    """Only bindings under the public scope key (or a public-<suffix> key) are
    replicated to other namespaces
    """
    return scope_key == constants.SCOPE_PUBLIC or scope_key.startswith(
        f"{constants.SCOPE_PUBLIC}-"
    )


class OperandBindInfo(ResourceView):
    """View over an OperandBindInfo"""

    kind = constants.KIND_OPERAND_BIND_INFO

    def __init__(self, manifest: dict):
        super().__init__(manifest)
        self.operand = self.spec.get("operand")
        self.registry = self.spec.get("registry")
        self.description = self.spec.get("description", "")

    @property
    def registry_namespace(self) -> str:
        return self.spec.get("registryNamespace") or self.namespace

    @property
    def bindings(self) -> Dict[str, dict]:
        return self.spec.get("bindings") or {}

    @property
    def public_bindings(self) -> Dict[str, dict]:
        return {
            key: binding
            for key, binding in self.bindings.items()
            if is_public_binding(key)
        }
