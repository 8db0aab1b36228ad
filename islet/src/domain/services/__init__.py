"""Domain services for Islet."""

from .state_machine import SurfaceStateMachine

__all__ = ['SurfaceStateMachine']
