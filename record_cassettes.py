"""
Script to record VCR cassettes of the real login flow.

Run this once with real credentials; afterwards the replay test in
tests/test_session.py works offline.
"""

import os
import subprocess
import sys
from pathlib import Path

CASSETTE_DIR = Path(__file__).parent / "tests" / "cassettes"


def check_credentials():
    """Check if credentials are available."""
    return bool(os.environ.get("ARCA_USERNAME") and os.environ.get("ARCA_PASSWORD"))


def main():
    """Record VCR cassettes."""
    print("🎬 VCR CASSETTE RECORDING SCRIPT")
    print("=" * 40)

    if not check_credentials():
        print("❌ Missing credentials!")
        print("Please export:")
        print("   ARCA_USERNAME=your_username")
        print("   ARCA_PASSWORD=your_password")
        return 1

    print("✅ Credentials found")
    print("🔄 Recording real HTTP interactions...")
    print()

    cmd = [
        "uv",
        "run",
        "pytest",
        "tests/test_session.py",
        "-m",
        "live",
        "-v",
        "-s",
    ]

    try:
        subprocess.run(cmd, check=True)
    except subprocess.CalledProcessError as e:
        print(f"❌ Recording failed: {e}")
        return 1

    print()
    print("🎉 Recording completed!")

    cassettes = sorted(CASSETTE_DIR.glob("*.yaml")) if CASSETTE_DIR.exists() else []
    if cassettes:
        print("📼 Created cassettes:")
        for cassette in cassettes:
            print(f"   - {cassette.name}")
    else:
        print("⚠️  No cassettes found")

    print()
    print("🧪 Now you can run replay tests:")
    print("   uv run pytest tests/test_session.py -v")
    return 0


if __name__ == "__main__":
    sys.exit(main())
