"""
auth — owner identity for the OAuth routes.

Provides:
  • Verification of signed owner bearer tokens (issued by the user service)
  • ``get_current_owner`` FastAPI dependency
"""
