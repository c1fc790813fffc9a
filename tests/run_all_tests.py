#!/usr/bin/env python3
"""
Test runner for the Timed Quiz Bot.

Run from the repository root: python -m tests.run_all_tests [category]
"""
import sys
import time
import unittest

CATEGORIES = {
    'models': ['tests.test_models', 'tests.test_result_renderer'],
    'session': [
        'tests.test_attempt_store',
        'tests.test_countdown',
        'tests.test_submitter',
        'tests.test_quiz_controller',
    ],
    'service': ['tests.test_quiz_service'],
    'config': ['tests.test_config_manager'],
    'bot': ['tests.test_bot'],
}

COMPONENTS = {
    'Models and rendering': 'models',
    'Attempt session (store, countdown, submitter, controller)': 'session',
    'Quiz service (HTTP and local)': 'service',
    'Configuration': 'config',
    'Discord bot and embeds': 'bot',
}


def load_suite(module_names):
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    for module_name in module_names:
        try:
            suite.addTest(loader.loadTestsFromName(module_name))
            print(f"✓ Loaded tests from {module_name}")
        except (ImportError, AttributeError) as e:
            print(f"✗ Failed to load {module_name}: {e}")
            return None
    return suite


def run_test_suite(module_names):
    """Run the given test modules and print a summary report."""
    print("=" * 70)
    print("Timed Quiz Bot - Test Suite")
    print("=" * 70)

    suite = load_suite(module_names)
    if suite is None:
        return False

    runner = unittest.TextTestRunner(verbosity=2, stream=sys.stdout, buffer=True)

    start_time = time.time()
    result = runner.run(suite)
    elapsed = time.time() - start_time

    total_tests = result.testsRun
    failures = len(result.failures)
    errors = len(result.errors)
    skipped = len(result.skipped)
    passed = total_tests - failures - errors - skipped

    print("\n" + "=" * 70)
    print("Test Summary Report")
    print("=" * 70)
    print(f"Total Tests Run: {total_tests}")
    print(f"Passed: {passed}")
    print(f"Failed: {failures}")
    print(f"Errors: {errors}")
    print(f"Skipped: {skipped}")
    print(f"Success Rate: {(passed / total_tests) * 100:.1f}%" if total_tests > 0 else "N/A")
    print(f"Execution Time: {elapsed:.2f} seconds")

    for label, problems in (("FAILURES", result.failures), ("ERRORS", result.errors)):
        if not problems:
            continue
        print("\n" + "-" * 50)
        print(f"{label}:")
        print("-" * 50)
        for test, traceback in problems:
            print(f"\n{test}:")
            print(traceback)

    return failures == 0 and errors == 0


def main(argv):
    if len(argv) > 1:
        category = argv[1]
        if category not in CATEGORIES:
            print(f"Unknown category: {category}")
            print(f"Available categories: {', '.join(CATEGORIES)}")
            return False
        return run_test_suite(CATEGORIES[category])

    for component, category in COMPONENTS.items():
        print(f"• {component}: {', '.join(CATEGORIES[category])}")
    return run_test_suite([name for names in CATEGORIES.values() for name in names])


if __name__ == '__main__':
    sys.exit(0 if main(sys.argv) else 1)
