# Integration Module
"""
Event log of decipher activity, used by the command line front end to
report and count outcomes.
"""

# Lazy imports to avoid RuntimeWarning when running module directly
def __getattr__(name):
    """Lazy import to avoid circular import issues."""
    from . import event_logger
    return getattr(event_logger, name)

__all__ = [
    'EventType',
    'DecipherEvent',
    'EventLogger',
    'get_path_hash',
    'create_event_logger',
]
