"""Local demo agent for CLI executor integration tests."""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Write the prompt into a file in the working directory and report it."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", required=True)
    parser.add_argument("--output-name", default="echo_output.txt")
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--exit-code", type=int, default=0)
    args = parser.parse_args(argv)

    if args.sleep > 0:
        time.sleep(args.sleep)
    if args.exit_code != 0:
        print("echo agent failing on request", file=sys.stderr)
        return args.exit_code

    prompt = Path(args.prompt_file).read_text("utf-8")
    target = Path.cwd() / args.output_name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(prompt, "utf-8")
    print(f"Created {args.output_name}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
