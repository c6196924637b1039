"""AgencyCRM - multi-tenant CRM for study-abroad agencies.

This package holds the access-control core (roles, permissions, branch
scoping) together with its persistence models and HTTP surface.
"""

__version__ = "0.3.0"
