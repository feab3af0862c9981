import os
import signal
import sys
from typing import List, Mapping, Optional

from .config import build_parser, load_config
from .errors import ConfigurationError
from .runner import EXIT_CONFIG, run


def _interrupt(signum, frame):
    raise KeyboardInterrupt


def main(argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    env = os.environ if environ is None else environ
    parser = build_parser(env)
    try:
        args = parser.parse_args(argv)
        config = load_config(args, usage=parser.format_help())
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("", file=sys.stderr)
        print(e.usage or parser.format_help(), file=sys.stderr)
        return EXIT_CONFIG

    # SIGTERM drains like Ctrl-C instead of killing in-flight copies.
    signal.signal(signal.SIGTERM, _interrupt)
    return run(config)


def entrypoint() -> None:
    sys.exit(main())
