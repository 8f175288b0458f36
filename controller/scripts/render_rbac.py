#!/usr/bin/env python3
"""
CronJob Controller - RBAC Renderer

Prints the ClusterRole granting the controller exactly the operations it
performs, for `kubectl apply -f -`.

Usage:
    cd controller && python scripts/render_rbac.py [--name NAME] [--output FILE]
    cd controller && python scripts/render_rbac.py --check GROUP RESOURCE VERB
"""

import sys
from pathlib import Path
from typing import Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import yaml

from services.cronjob.rbac import DEFAULT_ROLE_NAME, is_allowed, render_cluster_role


def render(name: str = DEFAULT_ROLE_NAME) -> str:
    """Render the ClusterRole as YAML."""
    return yaml.safe_dump(render_cluster_role(name), sort_keys=False)


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Render the CronJob controller ClusterRole"
    )
    parser.add_argument(
        "--name",
        default=DEFAULT_ROLE_NAME,
        help=f"ClusterRole name (default: {DEFAULT_ROLE_NAME})",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write to this file instead of stdout",
    )
    parser.add_argument(
        "--check",
        nargs=3,
        metavar=("GROUP", "RESOURCE", "VERB"),
        help="Exit 0 if the rules grant VERB on RESOURCE in GROUP, 1 otherwise",
    )
    args = parser.parse_args(argv)

    if args.check:
        allowed = is_allowed(*args.check)
        print("allowed" if allowed else "denied")
        return 0 if allowed else 1

    manifest = render(args.name)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(manifest, encoding="utf-8")
        print(f"Wrote {args.output}")
    else:
        sys.stdout.write(manifest)
    return 0


if __name__ == "__main__":
    sys.exit(main())
