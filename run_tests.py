#!/usr/bin/env python3
"""Test runner for the property expense engine."""

import sys
import subprocess
from pathlib import Path


def run_tests():
    """Run the complete test suite."""
    print("Running Property Expense Engine Test Suite")
    print("=" * 50)

    project_root = Path(__file__).parent

    result = subprocess.run([sys.executable, '-m', 'pytest', '--version'],
                            capture_output=True, text=True)
    if result.returncode != 0:
        print("pytest not found. Install the test extra: pip install -e '.[test]'")
        return False

    test_args = [
        sys.executable, '-m', 'pytest',
        'tests/',
        '-v',
        '--tb=short',
        '--durations=10',  # Show 10 slowest tests
    ]

    print("Running tests...")
    result = subprocess.run(test_args, cwd=project_root)

    if result.returncode == 0:
        print("\nAll tests passed!")
        print("\nTest Coverage Summary:")
        print("  - Categorization: keyword scoring, pattern dictionary, historical learning, feedback")
        print("  - Receipts: merchant, amount and date extraction, OCR validation, image batches")
        print("  - Trends: least-squares trends, seasonality, anomalies, period summaries")
        print("  - Allocation: rule methods, rounding, lifecycle, cost centers")
        print("  - Tax: rule classification, year summaries, export")
        return True

    print(f"\nTests failed (exit code: {result.returncode})")
    return False


def run_specific_test(test_pattern):
    """Run specific test matching pattern."""
    test_args = [
        sys.executable, '-m', 'pytest',
        'tests/',
        '-v',
        '-k', test_pattern
    ]

    result = subprocess.run(test_args, cwd=Path(__file__).parent)
    return result.returncode == 0


if __name__ == "__main__":
    if len(sys.argv) > 1:
        pattern = sys.argv[1]
        print(f"Running tests matching: {pattern}")
        success = run_specific_test(pattern)
    else:
        success = run_tests()

    sys.exit(0 if success else 1)
