"""Services package for Uno server components that span rooms."""

from .connection_supervisor import ConnectionSupervisor

__all__ = [
    "ConnectionSupervisor",
]
