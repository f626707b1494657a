import os
import sys

from logging_setup import configure_logging

# Initialize logging before building the service
configure_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    use_json=os.getenv("USE_JSON_LOGS", "true").lower() == "true"
)

from config_validator import validate_startup_config  # noqa: E402
from progress_events import describe_progress_event  # noqa: E402
from transcript_cache import SqliteTranscriptStore  # noqa: E402
from transcript_config import get_transcript_config  # noqa: E402
from transcript_service import TranscriptService  # noqa: E402


def _print_progress(event):
    print(describe_progress_event(event), file=sys.stderr)


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        print("usage: python main.py <url-or-path>", file=sys.stderr)
        return 2

    config = get_transcript_config()
    validate_startup_config(config)

    cache_path = os.getenv("TRANSCRIPT_CACHE_PATH")
    store = SqliteTranscriptStore(cache_path) if cache_path else None
    service = TranscriptService(config, store=store)

    resolution = service.resolve(argv[0], on_progress=_print_progress)
    if resolution.notes:
        print(f"notes: {resolution.notes}", file=sys.stderr)
    if not resolution.text:
        tried = ", ".join(resolution.attempted_providers) or "nothing"
        print(f"No transcript available (tried: {tried})", file=sys.stderr)
        return 1

    print(resolution.text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
