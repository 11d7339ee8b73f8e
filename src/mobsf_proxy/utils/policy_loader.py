import os
from typing import Optional

import yaml

from mobsf_proxy.engine.poller import DEFAULT_READY_KEYWORDS, CompletionPolicy
from mobsf_proxy.errors import ConfigurationError


def _keyword_list(data: dict, key: str, default):
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, list) or not all(isinstance(k, str) and k.strip() for k in value):
        raise ConfigurationError(f"'{key}' must be a list of non-empty strings")
    return tuple(k.strip() for k in value)


def load_completion_policy(file_path: Optional[str]) -> CompletionPolicy:
    """
    Load the log keyword policy from a YAML file:

        ready_keywords: ["generating report", "completed", ...]
        failure_keywords: ["scan failed"]

    Missing keys fall back to the built-in lists. No file means the built-in policy.
    """
    if not file_path:
        return CompletionPolicy()
    if not os.path.exists(file_path):
        raise ConfigurationError(f"Completion policy file not found: {file_path}")
    try:
        with open(file_path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read completion policy {file_path}: {e}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Completion policy {file_path} must be a mapping")
    return CompletionPolicy(
        ready_keywords=_keyword_list(data, "ready_keywords", DEFAULT_READY_KEYWORDS),
        failure_keywords=_keyword_list(data, "failure_keywords", ()),
    )
