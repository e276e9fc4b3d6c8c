"""
Registry Module

Everything needed to read image config labels from a container registry.

Architecture:
- CredentialStore: host → credential lookup loaded once at startup
- RegistryClientPool: one authenticated RegistryClient per host
- parse_image_reference: raw image string → ImageReference
- fetch_manifest / download_config_blob / extract_labels: manifest → config blob → labels
"""

from registry.client import RegistryClient, RegistryResponse
from registry.credentials import Credential, CredentialStore
from registry.errors import (
    AuthError,
    BlobDecodeError,
    BlobTooLargeError,
    CredentialError,
    CredentialsDocumentError,
    InvalidReferenceError,
    LabelResolutionError,
    NotFoundError,
    ParseError,
    PodFormatError,
    ReferenceParseError,
    RegistryError,
    RegistryTimeoutError,
    RegistryUnavailableError,
)
from registry.manifests import ManifestDescriptor, download_config_blob, extract_labels, fetch_manifest
from registry.pool import RegistryClientPool
from registry.reference import ImageReference, parse_image_reference

__all__ = [
    'RegistryClient',
    'RegistryResponse',
    'Credential',
    'CredentialStore',
    'RegistryClientPool',
    'ImageReference',
    'parse_image_reference',
    'ManifestDescriptor',
    'fetch_manifest',
    'download_config_blob',
    'extract_labels',
    'LabelResolutionError',
    'ReferenceParseError',
    'InvalidReferenceError',
    'PodFormatError',
    'CredentialError',
    'CredentialsDocumentError',
    'RegistryError',
    'NotFoundError',
    'AuthError',
    'RegistryUnavailableError',
    'RegistryTimeoutError',
    'BlobTooLargeError',
    'BlobDecodeError',
    'ParseError',
]
