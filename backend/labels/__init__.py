"""
Labels Module

Caching, validation and the resolution service built on the registry module.
"""

from labels.cache import CacheEntry, LabelCache
from labels.service import LabelService
from labels.validator import filter_labels, is_valid_label_key, is_valid_label_value, validate

__all__ = [
    'CacheEntry',
    'LabelCache',
    'LabelService',
    'filter_labels',
    'is_valid_label_key',
    'is_valid_label_value',
    'validate',
]
