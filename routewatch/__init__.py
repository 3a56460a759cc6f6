"""RouteWatch: HTTP telemetry collector, measuring proxy and live fan-out.

Exports for testing and module access.
"""

from routewatch import lib, models

__version__ = '0.1.0'

__all__ = ['lib', 'models', '__version__']
