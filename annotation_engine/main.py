import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from .config import LOG_FORMAT, LOG_LEVEL, load_config
from .engine import AnnotationLearningEngine
from .exceptions import AnnotationEngineError


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Send engine logs to stdout in the standard format."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="annotation-engine",
        description="Inspect the learned state of the annotation learning engine.",
    )
    parser.add_argument("--log-level", default=LOG_LEVEL, help="Logging level (default: INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analytics = subparsers.add_parser("analytics", help="Print analytics for an exported state file")
    analytics.add_argument("state", type=Path, help="JSON file written by export_state()")

    prompt = subparsers.add_parser("prompt", help="Render the adaptive prompt for a species feature")
    prompt.add_argument("state", type=Path, help="JSON file written by export_state()")
    prompt.add_argument("species", help="Species identifier")
    prompt.add_argument("feature", help="Feature type, e.g. pico")
    prompt.add_argument(
        "--base-prompt",
        default="Identify the anatomical features of the bird in this image.",
        help="Base prompt the learned guidance is appended to",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the annotation-engine command line."""
    # Find the .env file relative to this script
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(env_path)

    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        engine = AnnotationLearningEngine(load_config())
        engine.import_state(args.state.read_text(encoding="utf-8"))
    except (AnnotationEngineError, OSError) as e:
        logging.getLogger(__name__).error(f"Could not load engine state: {e}")
        return 1

    if args.command == "analytics":
        print(json.dumps(engine.get_analytics(), indent=2, sort_keys=True))
    else:
        adaptive = engine.generate_prompt(args.species, args.feature, args.base_prompt)
        print(f"# version {adaptive.version} (confidence {adaptive.confidence:.2f})")
        print(adaptive.render())

    return 0


if __name__ == "__main__":
    sys.exit(main())
