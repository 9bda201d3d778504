"""
Runtime configuration - environment driven, read once at import.
Factory getters build the configured collaborators.
"""

import os
from pathlib import Path

# Storage
DB_PATH = os.getenv("DB_PATH", "./data/storage.db")
ASSET_DIR = os.getenv("ASSET_DIR", "./data/assets")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Vector index strategy
VECTOR_PROVIDER = os.getenv("VECTOR_PROVIDER", "memory")  # memory|faiss

# Embeddings
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "sentence")  # sentence|hash
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "mixedbread-ai/mxbai-embed-large-v1")
EMBED_DIM = int(os.getenv("EMBED_DIM", "1024"))
EMBED_QUERY_PREFIX = os.getenv(
    "EMBED_QUERY_PREFIX",
    "Represent this sentence for searching relevant passages: ",
)
EMBED_CACHE_SIZE = int(os.getenv("EMBED_CACHE_SIZE", "2048"))

# Captioning
CAPTION_PROVIDER = os.getenv("CAPTION_PROVIDER", "ollama")  # ollama|mock
CAPTION_MODEL = os.getenv("CAPTION_MODEL", "llava:13b")
CAPTION_HOST = os.getenv("CAPTION_HOST")  # None -> ollama default

# Ingestion and search
INGEST_WORKERS = int(os.getenv("INGEST_WORKERS", "4"))
SEARCH_DEFAULT_K = int(os.getenv("SEARCH_DEFAULT_K", "5"))
_min_score = os.getenv("SEARCH_MIN_SCORE")
SEARCH_MIN_SCORE = float(_min_score) if _min_score else None

# Drift detection
DRIFT_RULESET = os.getenv("DRIFT_RULESET", "lenient")  # lenient|strict

# HTTP
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))

VERSION = "0.3.0"


def get_vector_index(dimension: int = None):
    """Build the configured vector index strategy."""
    dimension = dimension or EMBED_DIM

    if VECTOR_PROVIDER == "faiss":
        from ..vector.faiss_store import FaissVectorIndex
        return FaissVectorIndex(dimension)

    from ..vector.index import BruteForceVectorIndex
    return BruteForceVectorIndex(dimension)


def get_embedding_provider():
    """Build the configured embedding model adapter."""
    if EMBED_PROVIDER == "hash":
        from ..vector.embeddings import DeterministicHashEmbedding
        return DeterministicHashEmbedding(dimension=EMBED_DIM)

    from ..vector.embeddings import SentenceTransformerEmbedding
    return SentenceTransformerEmbedding(EMBED_MODEL_NAME, query_prefix=EMBED_QUERY_PREFIX)


def get_embedding_gateway():
    """Build the process-wide embedding gateway around the configured provider."""
    from ..vector.embeddings import EmbeddingGateway
    return EmbeddingGateway(get_embedding_provider(), cache_size=EMBED_CACHE_SIZE)


def get_captioner():
    """Build the configured captioner adapter."""
    if CAPTION_PROVIDER == "mock":
        from ..vision.captioner import MockCaptioner
        return MockCaptioner()

    from ..vision.captioner import OllamaCaptioner
    return OllamaCaptioner(model_name=CAPTION_MODEL, host=CAPTION_HOST)


def get_asset_store():
    """Build the asset store for photo bytes."""
    from ..vision.assets import FileAssetStore
    return FileAssetStore(ASSET_DIR)


def get_drift_ruleset():
    """Get drift ruleset configuration."""
    return os.getenv("DRIFT_RULESET", DRIFT_RULESET)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if VECTOR_PROVIDER not in ["memory", "faiss"]:
        issues.append(f"Invalid VECTOR_PROVIDER: {VECTOR_PROVIDER}")

    if EMBED_PROVIDER not in ["sentence", "hash"]:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")

    if CAPTION_PROVIDER not in ["ollama", "mock"]:
        issues.append(f"Invalid CAPTION_PROVIDER: {CAPTION_PROVIDER}")

    if DRIFT_RULESET not in ["lenient", "strict"]:
        issues.append(f"Invalid DRIFT_RULESET: {DRIFT_RULESET}")

    if EMBED_DIM < 1:
        issues.append("EMBED_DIM must be >= 1")

    if EMBED_CACHE_SIZE < 0:
        issues.append("EMBED_CACHE_SIZE must be >= 0")

    if INGEST_WORKERS < 1:
        issues.append("INGEST_WORKERS must be >= 1")

    if SEARCH_DEFAULT_K < 1:
        issues.append("SEARCH_DEFAULT_K must be >= 1")

    return issues
