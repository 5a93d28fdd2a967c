"""
Validation of the values loaded into the library config. Each key in the
validation file names a config key and a rule describing the allowed type and
value range.
"""

# Standard
from typing import Any, Callable, Dict, List, Optional

# First Party
import aconfig
import alog

# Local
from ..utils import nested_get

log = alog.use_channel("CONFG")


## Interface ###################################################################


def get_invalid_params(
    config: aconfig.Config,
    validation_config: aconfig.Config,
) -> List[str]:
    """Get the list of keys whose values fail validation

    Args:
        config:  aconfig.Config
            The parsed config with any override values
        validation_config:  aconfig.Config
            The parallel config holding one rule per key

    Returns:
        invalid_params:  List[str]
            Dotted names of every parameter that failed validation
    """
    invalid_params = []
    for key, rule in _flatten_rules(validation_config).items():
        value = nested_get(config, key)
        if not _check(rule, value):
            log.warning("Found invalid config key [%s] = %s", key, value)
            invalid_params.append(key)
    return invalid_params


## Implementation Details ######################################################


def _in_range(value: Any, low: Optional[Any], high: Optional[Any]) -> bool:
    return (low is None or value >= low) and (high is None or value <= high)


def _check_number(rule: Dict[str, Any], value: Any) -> bool:
    return _in_range(value, rule.get("min"), rule.get("max"))


def _check_str(rule: Dict[str, Any], value: str) -> bool:
    return _in_range(len(value), rule.get("min_len"), rule.get("max_len"))


def _check_enum(rule: Dict[str, Any], value: Any) -> bool:
    return value in rule.get("values", [])


# Map from type key to (allowed python types, value check)
_RULE_TYPES: Dict[str, tuple] = {
    "number": ((int, float), _check_number),
    "int": ((int,), _check_number),
    "float": ((float,), _check_number),
    "str": ((str,), _check_str),
    "bool": ((bool,), lambda _rule, _value: True),
    "enum": ((str, int, type(None)), _check_enum),
}


def _check(rule: Dict[str, Any], value: Any) -> bool:
    """Apply a single rule to a value"""
    if rule.get("optional") and value is None:
        return True
    rule_type = rule["type"]
    assert rule_type in _RULE_TYPES, f"Unknown validation type: {rule_type}"
    valid_types, value_check = _RULE_TYPES[rule_type]

    # bool is a subclass of int, so numeric rules must exclude it explicitly
    if isinstance(value, bool) and bool not in valid_types and rule_type != "enum":
        return False
    if not isinstance(value, valid_types):
        log.debug2("Invalid type <%s> for rule %s", type(value), rule_type)
        return False
    value_check: Callable[[Dict[str, Any], Any], bool]
    return value_check(rule, value)


def _flatten_rules(
    validation_config: Dict[str, Any],
    prefix: str = "",
) -> Dict[str, Dict[str, Any]]:
    """Walk the validation config and collect every dict that holds a 'type'
    key, keyed by its dotted path
    """
    rules = {}
    for key, val in validation_config.items():
        if not isinstance(val, dict):
            continue
        full_key = f"{prefix}.{key}" if prefix else key
        if "type" in val:
            rules[full_key] = dict(val)
        else:
            rules.update(_flatten_rules(val, full_key))
    return rules
