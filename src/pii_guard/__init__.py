"""pii-guard — reversible PII tokenization for AI chat messages."""

from .detector import DetectionMetrics, UnifiedDetector
from .errors import (
    ConfigError,
    PIIGuardError,
    RemoteDetectionError,
    RemoteError,
    RemoteTimeout,
    RemoteUnavailable,
)
from .middleware import RedactMiddleware
from .overlap import merge_with_tolerance, resolve_overlaps
from .patterns import PatternDetector
from .redactor import Redactor, RedactorConfig
from .remote import HttpRemoteDetector, RemoteConfig, RemoteDetectionPort
from .sessions import SessionRegistry
from .streaming import StreamingDetokenizer
from .tokenizer import SessionTokenizer
from .config import create_middleware, create_registry, load_config, load_from_yaml
from .types import DetectionOutcome, Entity, ExtractedToken, RedactedMessage

__all__ = [
    "UnifiedDetector", "DetectionMetrics",
    "PatternDetector",
    "RemoteDetectionPort", "HttpRemoteDetector", "RemoteConfig",
    "SessionTokenizer",
    "Redactor", "RedactorConfig",
    "RedactMiddleware",
    "StreamingDetokenizer",
    "SessionRegistry",
    "resolve_overlaps", "merge_with_tolerance",
    "create_middleware", "create_registry", "load_config", "load_from_yaml",
    "Entity", "DetectionOutcome", "ExtractedToken", "RedactedMessage",
    "PIIGuardError", "ConfigError", "RemoteDetectionError",
    "RemoteUnavailable", "RemoteTimeout", "RemoteError",
]
__version__ = "0.1.0"
