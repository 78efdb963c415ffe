"""
Run configuration.
Settings resolve from CLI flags first, then environment (a .env file is loaded by the CLI),
then defaults. Invalid values raise ConfigError.
"""

import os
import re
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Mapping, Optional
from errors import ConfigError

DEFAULT_WINDOW = '7.days'
DEFAULT_OUTPUT_DIR = 'results'
DEFAULT_MODEL = 'gemini-1.5-flash'
DEFAULT_MAX_PAGES = 50
DEFAULT_DETAIL_LIMIT = 10
DEFAULT_SAMPLE_SIZE = 20
DEFAULT_COURTESY_EVERY = 10
DEFAULT_COURTESY_SLEEP = 1.0

BACKENDS = ('graphql', 'rest')
FORMATS = ('json', 'markdown', 'html')
DESTINATIONS = ('stdout', 'file')
THEMES = ('default', 'dark', 'light')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

# aliases accepted for --format / OUTPUT_FORMAT
_FORMAT_ALIASES = {'md': 'markdown', 'markdown': 'markdown', 'json': 'json', 'html': 'html'}

_WINDOW_UNITS = {
    'm': 'minutes', 'min': 'minutes', 'minute': 'minutes', 'minutes': 'minutes',
    'h': 'hours', 'hour': 'hours', 'hours': 'hours',
    'd': 'days', 'day': 'days', 'days': 'days',
    'w': 'weeks', 'week': 'weeks', 'weeks': 'weeks',
}
_WINDOW_RE = re.compile(r'^\s*(\d+)\s*\.?\s*([a-zA-Z]+)\s*$')


def parse_window(text: str) -> timedelta:
    """Parse a duration such as ``7.days``, ``12.hours``, ``7d``, ``36h`` or ``1w``."""
    match = _WINDOW_RE.match(text or '')
    if not match:
        raise ConfigError(f"Unparsable time window: {text!r} (expected e.g. 7.days, 12.hours, 7d, 36h, 1w)")
    amount = int(match.group(1))
    unit = _WINDOW_UNITS.get(match.group(2).lower())
    if unit is None:
        raise ConfigError(f"Unknown time window unit in {text!r}")
    if amount <= 0:
        raise ConfigError(f"Time window must be positive: {text!r}")
    return timedelta(**{unit: amount})


class RunWindow:
    """
    The cutoff instant for one run. Computed once at run start; every remote call
    in the run receives ``since`` from this object.
    """
    def __init__(self, duration: timedelta, started_at: datetime, label: str = ''):
        self.duration = duration
        self.started_at = started_at
        self.since = started_at - duration
        self.label = label or f"{duration.days}.days"

    @property
    def days(self) -> float:
        return self.duration.total_seconds() / 86400.0

    def to_dict(self) -> Dict:
        return {'window': self.label, 'since': self.since.isoformat(), 'started_at': self.started_at.isoformat()}

    def __repr__(self):
        return f"RunWindow(label={self.label!r}, since={self.since.isoformat()})"


def compute_cutoff(window: str, now: Optional[datetime] = None) -> RunWindow:
    started = now or datetime.now(timezone.utc)
    if started.tzinfo is None:
        started = started.replace(tzinfo=timezone.utc)
    return RunWindow(parse_window(window), started, label=window.strip())


def _split_list(value) -> List[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        value = ','.join(value)
    return [part.strip() for part in str(value).split(',') if part.strip()]


def _parse_bool(value: str) -> bool:
    return str(value).strip().lower() not in ('0', 'false', 'no', 'off', '')


def _int_setting(value, name: str, minimum: int = 0) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if parsed < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {parsed}")
    return parsed


def _float_setting(value, name: str) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if parsed <= 0:
        raise ConfigError(f"{name} must be positive, got {parsed}")
    return parsed


class RunConfig:
    """Resolved settings for one run."""
    def __init__(
        self,
        token: str,
        organizations: List[str],
        gemini_key: str = '',
        users: Optional[List[str]] = None,
        window: str = DEFAULT_WINDOW,
        backend: str = 'graphql',
        formats: Optional[List[str]] = None,
        destination: str = 'stdout',
        output_dir: str = DEFAULT_OUTPUT_DIR,
        model: str = DEFAULT_MODEL,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        max_pages: int = DEFAULT_MAX_PAGES,
        detail_limit: int = DEFAULT_DETAIL_LIMIT,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        log_level: str = 'INFO',
        html_theme: str = 'default',
        html_title: str = '',
        thresholds_path: str = '',
        open_html: bool = False,
        verbose: bool = False,
        courtesy_every: int = DEFAULT_COURTESY_EVERY,
        courtesy_sleep: float = DEFAULT_COURTESY_SLEEP,
    ):
        self.token = token
        self.organizations = list(organizations)
        self.gemini_key = gemini_key or ''
        self.users = list(users or [])
        self.window = window
        self.backend = backend
        self.formats = list(formats or ['json'])
        self.destination = destination
        self.output_dir = output_dir
        self.model = model
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.max_pages = max_pages
        self.detail_limit = detail_limit
        self.sample_size = sample_size
        self.log_level = log_level
        self.html_theme = html_theme
        self.html_title = html_title
        self.thresholds_path = thresholds_path
        self.open_html = open_html
        self.verbose = verbose
        self.courtesy_every = courtesy_every
        self.courtesy_sleep = courtesy_sleep

    def __repr__(self):
        # never print credentials
        return f"RunConfig(organizations={self.organizations!r}, backend={self.backend!r}, window={self.window!r}, formats={self.formats!r})"


def _pick(cli_value, env: Mapping[str, str], env_name: str, default=None):
    if cli_value not in (None, ''):
        return cli_value
    env_value = env.get(env_name)
    if env_value not in (None, ''):
        return env_value
    return default


def _resolve_backend(args, env: Mapping[str, str]) -> str:
    if getattr(args, 'no_graphql', False):
        return 'rest'
    backend = getattr(args, 'backend', None)
    if not backend and env.get('USE_GRAPHQL') not in (None, ''):
        backend = 'graphql' if _parse_bool(env['USE_GRAPHQL']) else 'rest'
    backend = (backend or 'graphql').lower()
    if backend not in BACKENDS:
        raise ConfigError(f"Unknown backend {backend!r}; choose one of {', '.join(BACKENDS)}")
    return backend


def _resolve_formats(value) -> List[str]:
    formats = []
    for name in _split_list(value) or ['json']:
        fmt = _FORMAT_ALIASES.get(name.lower())
        if fmt is None:
            raise ConfigError(f"Unknown output format {name!r}; choose from {', '.join(FORMATS)}")
        if fmt not in formats:
            formats.append(fmt)
    return formats


def _resolve_choice(value: str, choices, name: str) -> str:
    value = (value or '').lower()
    if value not in choices:
        raise ConfigError(f"Unknown {name} {value!r}; choose one of {', '.join(choices)}")
    return value


def load_config(args, env: Optional[Mapping[str, str]] = None) -> RunConfig:
    """Build a RunConfig from parsed CLI args and the environment."""
    env = os.environ if env is None else env

    token = _pick(getattr(args, 'token', None), env, 'GITHUB_TOKEN')
    if not token:
        raise ConfigError('Missing GitHub token (CLI flag --token or env GITHUB_TOKEN)')
    organizations = _split_list(_pick(getattr(args, 'org', None), env, 'GITHUB_ORG_NAME'))
    if not organizations:
        raise ConfigError('Missing organization (CLI flag --org or env GITHUB_ORG_NAME)')

    window = _pick(getattr(args, 'window', None), env, 'FETCH_WINDOW', DEFAULT_WINDOW)
    parse_window(window)

    log_level = str(_pick(getattr(args, 'log_level', None), env, 'LOG_LEVEL', 'INFO')).upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"Unknown log level {log_level!r}; choose one of {', '.join(LOG_LEVELS)}")

    max_retries = _pick(getattr(args, 'max_retries', None), env, 'DIGEST_MAX_RETRIES')
    backoff_base = _pick(getattr(args, 'backoff_base', None), env, 'DIGEST_BACKOFF_BASE')

    return RunConfig(
        token=token,
        organizations=organizations,
        gemini_key=_pick(getattr(args, 'gemini_key', None), env, 'GEMINI_API_KEY', ''),
        users=_split_list(_pick(getattr(args, 'users', None), env, 'SPECIFIC_USERS')),
        window=window,
        backend=_resolve_backend(args, env),
        formats=_resolve_formats(_pick(getattr(args, 'format', None), env, 'OUTPUT_FORMAT', 'json')),
        destination=_resolve_choice(_pick(getattr(args, 'destination', None), env, 'OUTPUT_DESTINATION', 'stdout'), DESTINATIONS, 'destination'),
        output_dir=_pick(getattr(args, 'output_dir', None), env, 'OUTPUT_DIR', DEFAULT_OUTPUT_DIR),
        model=_pick(getattr(args, 'model', None), env, 'GEMINI_MODEL', DEFAULT_MODEL),
        max_retries=_int_setting(max_retries, 'max retries') if max_retries is not None else None,
        backoff_base=_float_setting(backoff_base, 'backoff base') if backoff_base is not None else None,
        max_pages=_int_setting(_pick(getattr(args, 'max_pages', None), env, 'DIGEST_MAX_PAGES', DEFAULT_MAX_PAGES), 'max pages', minimum=1),
        detail_limit=_int_setting(_pick(getattr(args, 'detail_limit', None), env, 'DIGEST_DETAIL_LIMIT', DEFAULT_DETAIL_LIMIT), 'detail limit'),
        sample_size=_int_setting(_pick(getattr(args, 'sample_size', None), env, 'DIGEST_SAMPLE_SIZE', DEFAULT_SAMPLE_SIZE), 'sample size', minimum=1),
        log_level=log_level,
        html_theme=_resolve_choice(_pick(getattr(args, 'html_theme', None), env, 'HTML_THEME', 'default'), THEMES, 'HTML theme'),
        html_title=_pick(getattr(args, 'html_title', None), env, 'HTML_TITLE', ''),
        thresholds_path=_pick(getattr(args, 'thresholds', None), env, 'DIGEST_THRESHOLDS', ''),
        open_html=bool(getattr(args, 'open', False)),
        verbose=bool(getattr(args, 'verbose', False)),
    )


__all__ = ["RunConfig", "RunWindow", "load_config", "parse_window", "compute_cutoff"]
