"""Exit codes for clipack CLI commands.

Warnings never change the exit code; only the conditions below do.
"""

# Success
SUCCESS = 0

# Errors
GENERAL_ERROR = 1
INVALID_ARGS = 2
CONFIG_ERROR = 3
PACKAGE_NOT_FOUND = 4
PACKAGE_INVALID = 5
STEP_FAILED = 6
FETCH_ERROR = 7
