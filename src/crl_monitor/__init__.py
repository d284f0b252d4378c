"""
crl_monitor — Certificate Revocation List monitor for the CCADB intermediates.

Downloads the full and partitioned CRLs every listed CA publishes, keeps a
local cache current with conditional requests, verifies each CRL against a
trust store of intermediate certificates, lints it for RFC 5280 / CA/B Forum
compliance and reports corpus-wide revocation statistics.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
