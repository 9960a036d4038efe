"""
UTILITIES PACKAGE
=================

Helpers used by the services (no HTTP, no business logic):

  background - DetachedTaskTracker: spawn work that outlives a request, drain it on shutdown.
"""
