"""
Run configuration.

Every setting can come from an environment variable or a command-line flag;
flags win because the parser reads its defaults from the environment. AWS
credentials not given either way are looked up in a YAML secrets file laid out
like the application's secrets.yml:

  production:
    storage:
      s3:
        access_key_id: ...
        secret_access_key: ...
        region: eu-south-2
"""

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .errors import ConfigurationError
from .report import default_log_path
from .sources import DEFAULT_BATCH_SIZE
from .store import Credentials
from .worker import DEFAULT_CONCURRENCY

DEFAULT_PROGRESS_INTERVAL = 1000
TRUE_VALUES = {"1", "true", "yes", "on"}

EXAMPLES = """\
examples:
  DRY_RUN=true S3_BUCKET=my-bucket DATABASE_URL=postgresql://... s3-disposition-fix
  s3-disposition-fix --bucket my-bucket --source-file blobs.txt --aws-key AKIA... --aws-secret ... --aws-region eu-south-2
  s3-disposition-fix --bucket my-bucket --database-url postgresql://... --secrets-file config/secrets.yml --environment production --dry-run
  DRY_RUN=true s3-disposition-fix --no-dry-run ...

PostgreSQL URLs need a driver: pip install "s3-disposition-fix[postgres]"
"""


@dataclass(frozen=True)
class RunConfig:
    bucket: str
    credentials: Credentials
    dry_run: bool = False
    concurrency: int = DEFAULT_CONCURRENCY
    batch_size: int = DEFAULT_BATCH_SIZE
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL
    log_file: Optional[Path] = None
    failed_keys_file: Optional[Path] = None
    database_url: Optional[str] = None
    source_file: Optional[Path] = None
    environment: Optional[str] = None

    @property
    def mode(self) -> str:
        return "DRY RUN" if self.dry_run else "LIVE"


class _Parser(argparse.ArgumentParser):
    def error(self, message):
        raise ConfigurationError(message, usage=self.format_help())


def _first(environ: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = environ.get(name)
        if value:
            return value
    return None


def build_parser(environ: Optional[Mapping[str, str]] = None) -> argparse.ArgumentParser:
    env = os.environ if environ is None else environ
    ap = _Parser(
        prog="s3-disposition-fix",
        description="Rewrite Content-Type and Content-Disposition on every stored blob's S3 object.",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    ap.add_argument("--bucket", default=_first(env, "S3_BUCKET", "BUCKET"), help="S3 bucket name (required).")
    ap.add_argument("--dry-run", action=argparse.BooleanOptionalAction,
                    default=(env.get("DRY_RUN", "").strip().lower() in TRUE_VALUES),
                    help="Preview the first 5 blobs without changing anything. --no-dry-run overrides DRY_RUN.")
    ap.add_argument("--aws-key", default=env.get("AWS_ACCESS_KEY_ID"), help="AWS access key id.")
    ap.add_argument("--aws-secret", default=env.get("AWS_SECRET_ACCESS_KEY"), help="AWS secret access key.")
    ap.add_argument("--aws-region", default=_first(env, "AWS_DEFAULT_REGION", "AWS_REGION"), help="AWS region.")
    ap.add_argument("--database-url", default=env.get("DATABASE_URL"), help="SQLAlchemy URL of the blob datastore.")
    ap.add_argument("--source-file", default=env.get("BLOB_EXPORT_FILE"),
                    help="key|filename|content_type export to read instead of the database.")
    ap.add_argument("--secrets-file", default=env.get("SECRETS_FILE"), help="YAML file holding storage.s3 credentials.")
    ap.add_argument("--environment", default=_first(env, "RAILS_ENV", "APP_ENV"),
                    help="Section of the secrets file to read.")
    ap.add_argument("--concurrency", default=env.get("FIX_CONCURRENCY", str(DEFAULT_CONCURRENCY)),
                    help="Copies in flight at once.")
    ap.add_argument("--batch-size", default=env.get("FIX_BATCH_SIZE", str(DEFAULT_BATCH_SIZE)),
                    help="Blobs fetched per page.")
    ap.add_argument("--progress-interval", default=env.get("FIX_PROGRESS_INTERVAL", str(DEFAULT_PROGRESS_INTERVAL)),
                    help="Report progress every N objects in live mode.")
    ap.add_argument("--log-file", default=env.get("FIX_LOG_FILE"), help="Append-only log file path.")
    ap.add_argument("--failed-keys-file", default=env.get("FIX_FAILED_KEYS_FILE"),
                    help="Where refs of failed objects are written, in export format.")
    return ap


def parse_args(argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None) -> argparse.Namespace:
    return build_parser(environ).parse_args(argv)


# -----------------------------
# Secrets
# -----------------------------

def load_secrets(path: Path, environment: Optional[str] = None) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigurationError(f"cannot read secrets file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"secrets file {path} is not valid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"secrets file {path} must hold a mapping")
    section = data.get(environment) if environment and isinstance(data.get(environment), dict) else data
    s3 = ((section.get("storage") or {}).get("s3") or {}) if isinstance(section, dict) else {}
    return s3 if isinstance(s3, dict) else {}


def _positive_int(raw: Any, flag: str, usage: str) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{flag} must be an integer, got {raw!r}", usage=usage)
    if value <= 0:
        raise ConfigurationError(f"{flag} must be positive, got {value}", usage=usage)
    return value


def load_config(args: argparse.Namespace, usage: str = "") -> RunConfig:
    """Validate parsed arguments. Raises ConfigurationError before any work starts."""
    bucket = (args.bucket or "").strip()
    if not bucket:
        raise ConfigurationError("missing required bucket (--bucket or S3_BUCKET)", usage=usage)

    if bool(args.database_url) == bool(args.source_file):
        raise ConfigurationError(
            "exactly one blob source is required (--database-url/DATABASE_URL or --source-file/BLOB_EXPORT_FILE)",
            usage=usage,
        )

    secrets: Dict[str, Any] = {}
    if args.secrets_file and not (args.aws_key and args.aws_secret and args.aws_region):
        secrets = load_secrets(Path(args.secrets_file), args.environment)

    credentials = Credentials(
        access_key=args.aws_key or secrets.get("access_key_id"),
        secret_key=args.aws_secret or secrets.get("secret_access_key"),
        region=args.aws_region or secrets.get("region"),
    )
    if not credentials.access_key or not credentials.secret_key:
        raise ConfigurationError(
            "AWS credentials are required (--aws-key/--aws-secret, AWS_ACCESS_KEY_ID/AWS_SECRET_ACCESS_KEY, "
            "or storage.s3 in --secrets-file)",
            usage=usage,
        )

    return RunConfig(
        bucket=bucket,
        credentials=credentials,
        dry_run=bool(args.dry_run),
        concurrency=_positive_int(args.concurrency, "--concurrency", usage),
        batch_size=_positive_int(args.batch_size, "--batch-size", usage),
        progress_interval=_positive_int(args.progress_interval, "--progress-interval", usage),
        log_file=Path(args.log_file) if args.log_file else default_log_path(),
        failed_keys_file=Path(args.failed_keys_file) if args.failed_keys_file else None,
        database_url=args.database_url or None,
        source_file=Path(args.source_file) if args.source_file else None,
        environment=args.environment or None,
    )
