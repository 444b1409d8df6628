"""
                ERP Package Deployer

Multi-tenant deployment service that installs bundles of business
capability modules into a tenant's isolated workspace, with a full
audit trail and partial-failure tolerance.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
