"""
Log Gateway

OIDC login gateway that keeps a server-side session for the signed-in user
and fronts a small log-retrieval API backed by CloudWatch Logs.
"""

__version__ = "1.0.0"
