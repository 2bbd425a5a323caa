"""
Core Tracking Components.

Structure:
    models/: Pure data structures (no business logic)
    logic/: Transition rules and progress calculations
    Core classes (lazy, they import the infrastructure layer)

Exports:
    RunStateMachine: Guarded run/subtask transitions
    AtomicCounter: Concurrency-safe items_complete increments
    RetryPolicy: Backoff for store contention
    TaskResolver: Stage/task/filename lookup
    ExecutionContext: Active run and subtask holder
    Tracker: Context-aware facade
"""

# Make subpackages available first (no circular dependencies)
from . import models
from . import logic

# Lazy imports to avoid circular dependencies
# These are imported on first access via __getattr__
_LAZY_IMPORTS = {
    'RunStateMachine': '.state_manager',
    'AtomicCounter': '.counter',
    'RetryPolicy': '.retry',
    'TaskResolver': '.lookup',
    'ExecutionContext': '.context',
    'Tracker': '.tracker',
}


def __getattr__(name):
    """Lazy import core classes to avoid circular dependencies."""
    if name in _LAZY_IMPORTS:
        from importlib import import_module
        module = import_module(_LAZY_IMPORTS[name], package='core')
        return getattr(module, name)
    raise AttributeError(f"module 'core' has no attribute '{name}'")


__all__ = [
    'RunStateMachine',
    'AtomicCounter',
    'RetryPolicy',
    'TaskResolver',
    'ExecutionContext',
    'Tracker',
    'models',
    'logic',
]
