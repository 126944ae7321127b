"""Hypothesis configuration for the test suite.

The too_slow health check trips on a cold start (first run, before
Hypothesis has warmed its strategy caches); it does not affect which
examples are generated or what the tests assert.
"""

from hypothesis import HealthCheck, settings

settings.register_profile("default", suppress_health_check=[HealthCheck.too_slow])
settings.load_profile("default")
