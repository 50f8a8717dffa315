import sys
import argparse
from pathlib import Path
from .conda import ExtractionError, extract_package


def main():
    parser = argparse.ArgumentParser(
        description="Extracts a .conda package without conda.", add_help=False
    )
    parser.add_argument("package", type=Path, help="Path to the .conda package.")
    parser.add_argument(
        "target_dir", type=Path, help="Directory to extract the package into."
    )
    args = parser.parse_args()
    try:
        extract_package(args.package, args.target_dir)
    except ExtractionError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print("Extraction complete.")


if __name__ == "__main__":
    main()
