"""
Vision collaborators - photo captioning, decoding and storage.
"""

from .assets import IAssetStore, FileAssetStore, MemoryAssetStore
from .captioner import ICaptioner, OllamaCaptioner, MockCaptioner
from .images import PreparedPhoto, decode_image, downscale, is_image, prepare_photo

__all__ = [
    'IAssetStore',
    'FileAssetStore',
    'MemoryAssetStore',
    'ICaptioner',
    'OllamaCaptioner',
    'MockCaptioner',
    'PreparedPhoto',
    'decode_image',
    'downscale',
    'is_image',
    'prepare_photo',
]
