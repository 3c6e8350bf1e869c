"""
Approval package: outbound channels, reply parsing and the approval state machine.
"""

from .response_parser import parse_response
from .service import ApprovalService

__all__ = ["ApprovalService", "parse_response"]
