"""
OpsBoard Access Control
=======================

Authorization core of the OpsBoard / CPS Task Manager API.  One rule
table decides which role may act on which resource (users, tasks,
classes, contests, contest video solutions, payments, videos, comments
and marketing campaigns); the ``AccessControlGate`` evaluates it per
request and a thin FastAPI adapter maps its decisions to 401 / 403 / 404
responses.
"""

__version__ = "0.1.0"
