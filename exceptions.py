#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Custom exceptions for the shop orders service.

Errors carry an `ErrorKind` rather than an HTTP status. The transport layer
(`server.py`) owns the mapping from kind to status code.
"""

import enum


class ErrorKind(str, enum.Enum):
  VALIDATION = "VALIDATION_ERROR"
  NOT_FOUND = "NOT_FOUND"
  FORBIDDEN = "FORBIDDEN"
  CONFLICT = "CONFLICT"
  INVALID_STATE = "INVALID_STATE"
  UPSTREAM_GATEWAY = "UPSTREAM_GATEWAY_ERROR"
  SIGNATURE = "INVALID_SIGNATURE"


class ShopError(Exception):
  """Base class for all domain exceptions."""

  kind: ErrorKind = ErrorKind.VALIDATION

  def __init__(self, message: str):
    self.message = message
    super().__init__(self.message)


class ValidationError(ShopError):
  """Raised when input is malformed or violates a business rule."""

  kind = ErrorKind.VALIDATION

  def __init__(self, message: str, details: list[str] | None = None):
    super().__init__(message)
    self.details = details or []


class NotFoundError(ShopError):
  """Raised when a shop, order, product or user does not exist."""

  kind = ErrorKind.NOT_FOUND


class ForbiddenError(ShopError):
  """Raised when the caller does not own the requested resource."""

  kind = ErrorKind.FORBIDDEN


class ConflictError(ShopError):
  """Raised when a unique value (domain, slug, tracking id) is taken."""

  kind = ErrorKind.CONFLICT


class InvalidStateError(ShopError):
  """Raised when an order transition is not permitted from its state."""

  kind = ErrorKind.INVALID_STATE


class UpstreamGatewayError(ShopError):
  """Raised when the payment provider fails to create a checkout session."""

  kind = ErrorKind.UPSTREAM_GATEWAY


class SignatureError(ShopError):
  """Raised when a webhook payload fails signature verification."""

  kind = ErrorKind.SIGNATURE
