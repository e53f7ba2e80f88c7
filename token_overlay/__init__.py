"""Token overlay indexer for push-drop token outputs."""

from .admission import AdmissionEngine, AdmissionResult, AdmittedOutput, OutputDiagnostic
from .config import ConfigurationError, IndexerConfig, RPCConfig, configure_logging, load_indexer_config
from .errors import (
    DuplicateOutputError,
    RecordNotFoundError,
    StorageError,
    TokenOverlayError,
    UnsupportedQueryError,
)
from .index import AdmitOutput, EvictOutput, IngestOutcome, MarkSpent, TokenIndex
from .models import (
    LayoutVersion,
    TokenBalance,
    TokenCandidate,
    TokenRecord,
    TransactionOutput,
    UtxoRef,
)
from .query import QueryEngine
from .script_codec import (
    DecodeError,
    DecodeErrorCode,
    PushDropScript,
    ScriptEncodingError,
    decode_pushdrop,
    encode_pushdrop,
    push_data,
)
from .service import TokenOverlayService, generate_token_id
from .store import SQLiteTokenStore, TokenStore
from .validator import FieldValidator, RejectionCode, RejectionReason, encode_amount, parse_amount

__all__ = [
    "AdmissionEngine",
    "AdmissionResult",
    "AdmittedOutput",
    "OutputDiagnostic",
    "ConfigurationError",
    "IndexerConfig",
    "RPCConfig",
    "configure_logging",
    "load_indexer_config",
    "DuplicateOutputError",
    "RecordNotFoundError",
    "StorageError",
    "TokenOverlayError",
    "UnsupportedQueryError",
    "AdmitOutput",
    "EvictOutput",
    "IngestOutcome",
    "MarkSpent",
    "TokenIndex",
    "LayoutVersion",
    "TokenBalance",
    "TokenCandidate",
    "TokenRecord",
    "TransactionOutput",
    "UtxoRef",
    "QueryEngine",
    "DecodeError",
    "DecodeErrorCode",
    "PushDropScript",
    "ScriptEncodingError",
    "decode_pushdrop",
    "encode_pushdrop",
    "push_data",
    "TokenOverlayService",
    "generate_token_id",
    "SQLiteTokenStore",
    "TokenStore",
    "FieldValidator",
    "RejectionCode",
    "RejectionReason",
    "encode_amount",
    "parse_amount",
]
