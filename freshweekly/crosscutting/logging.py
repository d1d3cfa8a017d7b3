import json
import logging
import re
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

run_id_var: ContextVar[Optional[str]] = ContextVar('run_id', default=None)
playlist_id_var: ContextVar[Optional[str]] = ContextVar('playlist_id', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)
tier_var: ContextVar[Optional[str]] = ContextVar('tier', default=None)

# Context variable -> key in the JSON record
_CORRELATION_FIELDS = (
    ('run_id', run_id_var, 'runId'),
    ('playlist_id', playlist_id_var, 'playlistId'),
    ('stage', stage_var, 'stage'),
    ('tier', tier_var, 'tier'),
)

_SECRET_PATTERNS = (
    # Generic credentials: "token: ...", "client_secret=..."
    r'(?i)(token|key|secret|password|auth)\s*[:=]\s*["\']?([A-Za-z0-9\-_.]{10,})["\']?',
    # Spotify access and refresh tokens
    r'(?i)(spotify_access_token|access_token|refresh_token)\s*[:=]\s*["\']?([A-Za-z0-9\-_.]{50,})["\']?',
    # PKCE code verifiers
    r'(?i)(code_verifier|verifier)\s*[:=]\s*["\']?([A-Za-z0-9\-_.~]{20,})["\']?',
    r'(?i)(bearer)\s+([A-Za-z0-9\-_.]{20,})',
    # Authorization codes from the redirect
    r'(?i)(code|authorization_code)\s*[:=]\s*["\']?([A-Za-z0-9\-_.]{20,})["\']?',
)


def _obscure(secret: str) -> str:
    if len(secret) <= 8:
        return '*' * len(secret)
    return secret[:4] + '*' * (len(secret) - 8) + secret[-4:]


class SecretMasker:
    """Masks credentials in log messages and structured fields.

    A match keeps its label and the first and last four characters of the
    secret, e.g. ``token: abc1**********i789``.
    """

    def __init__(self):
        self.compiled_patterns = [re.compile(pattern) for pattern in _SECRET_PATTERNS]

    def mask_secrets(self, text: str) -> str:
        if not text:
            return text
        for pattern in self.compiled_patterns:
            text = pattern.sub(lambda m: f"{m.group(1)}: {_obscure(m.group(2))}", text)
        return text

    def _mask_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.mask_secrets(value)
        if isinstance(value, dict):
            return self.mask_dict(value)
        if isinstance(value, list):
            return [self._mask_value(item) for item in value]
        return value

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask string values of a (nested) dictionary."""
        if not data:
            return data
        return {key: self._mask_value(value) for key, value in data.items()}


class StructuredFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def __init__(self):
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.masker.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for _, var, key in _CORRELATION_FIELDS:
            value = var.get()
            if value:
                entry[key] = value

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        fields = getattr(record, 'fields', None)
        if fields:
            entry['fields'] = self.masker.mask_dict(fields)

        return json.dumps(entry, ensure_ascii=False, default=str)


class CorrelationContext:
    """Sets correlation fields for the duration of a ``with`` block.

    Only the values passed in are set; previous values come back on exit.
    """

    def __init__(self, run_id: Optional[str] = None,
                 playlist_id: Optional[str] = None,
                 stage: Optional[str] = None,
                 tier: Optional[str] = None):
        self._values = {'run_id': run_id, 'playlist_id': playlist_id, 'stage': stage, 'tier': tier}
        self._tokens = []

    def __enter__(self):
        for name, var, _ in _CORRELATION_FIELDS:
            value = self._values[name]
            if value is not None:
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []


def set_stage(stage: Optional[str]) -> None:
    stage_var.set(stage)


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None,
                  json_format: bool = True) -> logging.Logger:
    """Configure handlers on the ``freshweekly`` logger, replacing existing ones."""
    logger = logging.getLogger('freshweekly')
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_logger(name: str = 'freshweekly') -> logging.Logger:
    return logging.getLogger(name)


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None, exc_info: bool = False,
                    **kwargs) -> None:
    """Log message with structured fields attached as ``record.fields``."""
    extra_fields = dict(fields or {})
    extra_fields.update(kwargs)
    logger.log(
        getattr(logging, level.upper()),
        message,
        extra={'fields': extra_fields} if extra_fields else None,
        exc_info=exc_info,
        stacklevel=2,
    )


def log_run_start(logger: logging.Logger, run_id: str, source_playlist_id: str, **kwargs) -> None:
    with CorrelationContext(run_id=run_id, playlist_id=source_playlist_id, stage='start'):
        log_with_fields(logger, 'INFO', 'Generation started', kwargs)


def log_tier_complete(logger: logging.Logger, tier: str, accepted: int, total: int, **kwargs) -> None:
    with CorrelationContext(tier=tier):
        log_with_fields(logger, 'INFO', 'Discovery tier completed',
                        {'accepted': accepted, 'total': total, **kwargs})


def log_run_complete(logger: logging.Logger, run_id: str, track_count: int,
                     playlist_id: Optional[str], **kwargs) -> None:
    with CorrelationContext(run_id=run_id, stage='complete'):
        log_with_fields(logger, 'INFO', 'Generation completed',
                        {'track_count': track_count, 'target_playlist_id': playlist_id, **kwargs})


def log_error(logger: logging.Logger, message: str, error: Exception, **kwargs) -> None:
    """Log an error with its type, message and traceback."""
    log_with_fields(logger, 'ERROR', message, {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    }, exc_info=True)
