"""Launch a program whenever watched files or directories change.

This package watches one or more filesystem paths and starts an external
executable when activity is detected, coalescing bursts of changes and
optionally pausing observation while the launched program runs.
"""

__version__ = "0.1.0"
