"""
connectors — sportsbook account linking over OAuth2 (authorization code + PKCE).

Handles:
  • Code → token exchange against BetWiz / WinningEdge
  • AES-256-CBC encryption of tokens at rest
  • Per-owner link storage with one active link per sportsbook
  • On-demand and background token refresh
  • Revocation / unsubscribe with best-effort sportsbook notifications
"""
