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

"""Decimal money helpers shared by the cart, order and checkout services.

Amounts are kept as `Decimal` in the shop's currency. Conversion to the
payment provider's integer minor units happens only at the gateway boundary.
"""

from decimal import Decimal
from decimal import ROUND_HALF_UP
from typing import Any

# Currencies charged in whole units.
ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})

# Currencies charged in thousandths.
THREE_DECIMAL_CURRENCIES = frozenset({
    "BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND",
})

# Matches the scale of the Numeric money columns.
STORAGE_QUANTUM = Decimal("0.0001")

HUNDRED = Decimal(100)


def to_decimal(value: Any) -> Decimal:
  """Coerces ints, floats, strings and Decimals to Decimal."""
  if isinstance(value, Decimal):
    return value
  if value is None:
    return Decimal(0)
  # str() keeps floats like 19.99 from turning into 19.989999...
  return Decimal(str(value))


def quantize(amount: Any) -> Decimal:
  """Rounds an amount to the storage scale."""
  return to_decimal(amount).quantize(STORAGE_QUANTUM, rounding=ROUND_HALF_UP)


def line_subtotal(quantity: int, price: Any, discount: Any) -> Decimal:
  """Returns quantity x price x (1 - discount / 100)."""
  factor = 1 - to_decimal(discount) / HUNDRED
  return quantize(to_decimal(price) * quantity * factor)


def minor_unit_multiplier(currency: str) -> int:
  """Returns the factor between a major amount and provider minor units."""
  code = currency.upper()
  if code in ZERO_DECIMAL_CURRENCIES:
    return 1
  if code in THREE_DECIMAL_CURRENCIES:
    return 1000
  return 100


def to_minor_units(amount: Any, currency: str) -> int:
  """Converts a major-unit amount to the provider's integer minor units.

  Args:
    amount: The amount in the currency's major unit (e.g. 19.99 USD).
    currency: ISO 4217 code, case-insensitive.

  Returns:
    The amount scaled by the currency's multiplier and rounded half-up to the
    nearest integer (e.g. 1999 for 19.99 USD, 1500 for 1500 JPY).
  """
  scaled = to_decimal(amount) * minor_unit_multiplier(currency)
  return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))
