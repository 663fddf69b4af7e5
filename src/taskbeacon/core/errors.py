# src/taskbeacon/core/errors.py

"""
Error taxonomy.

Mutation paths (user-initiated) raise these to the caller.
Sweep paths catch them per item and only log.
"""

from __future__ import annotations


class TaskBeaconError(Exception):
    """Base class for every error raised by the core."""


class Unauthorized(TaskBeaconError):
    """No acting user, or the acting user lacks ownership/membership."""


class NotFound(TaskBeaconError):
    """Referenced task/reminder/group/template/notification does not exist."""


class ValidationError(TaskBeaconError):
    """Rejected input: self/duplicate/cyclic dependency, sharing outside one's groups, bad rule."""


class DispatchFailure(TaskBeaconError):
    """The notifier could not deliver to any token of a recipient."""


class ConfigurationError(TaskBeaconError):
    """Push transport is not initialized (missing credentials/project)."""
