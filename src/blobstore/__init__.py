"""blobstore - content blob storage over filesystem and S3 backends.

Blobs are addressed by a three-level key (graph, resource, encoding), written
through a hashing and optional gzip pipeline, and deleted one at a time or by
graph/resource subtree.
"""

from blobstore.config import BlobStoreConfig, load_blob_store_config
from blobstore.descriptors import build_delete_actions, build_encoding_descriptor
from blobstore.params import BlobParams, infer_content_type, resolve_blob_params
from blobstore.store import BlobStore, create_backend

__all__ = [
    "BlobParams",
    "BlobStore",
    "BlobStoreConfig",
    "build_delete_actions",
    "build_encoding_descriptor",
    "create_backend",
    "infer_content_type",
    "load_blob_store_config",
    "resolve_blob_params",
]
